"""Market context handed to the scoring model.

Built from recent minute bars. Indicators use the ta library on a pandas
frame; a symbol without enough bars or enough liquidity is refused before
any model call is made.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pandas as pd
from ta.momentum import RSIIndicator
from ta.volatility import AverageTrueRange

from autopilot.config.constants import ScoreFailure
from autopilot.config.settings import Settings, get_settings
from autopilot.exceptions import ScoringError


@dataclass
class MarketContext:
    """Derived features for one ticker."""

    ticker: str
    bars_used: int
    last_close: float
    session_vwap: float | None
    pct_change: float
    avg_dollar_volume: float
    above_vwap: bool | None
    rsi: float | None
    atr: float | None
    recent_high: float
    recent_low: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _last_valid(series: pd.Series, digits: int) -> float | None:
    valid = series.dropna()
    if len(valid) == 0:
        return None
    return round(float(valid.iloc[-1]), digits)


def compute_context(ticker: str, bars: list[dict[str, Any]], settings: Settings | None = None) -> MarketContext:
    """
    Derive scoring features from bars (oldest first).

    Raises:
        ScoringError: insufficient_bars when the history or liquidity is too thin
    """
    settings = settings or get_settings()
    if len(bars) < settings.min_bars_for_ai:
        raise ScoringError(
            ScoreFailure.INSUFFICIENT_BARS,
            f"insufficient_bars: {len(bars)} < {settings.min_bars_for_ai}",
        )

    df = pd.DataFrame(bars)
    dollar_volume = df["close"] * df["volume"]
    avg_dollar_volume = float(dollar_volume.mean())
    if avg_dollar_volume < settings.ai_min_avg_dollar_volume:
        raise ScoringError(
            ScoreFailure.INSUFFICIENT_BARS,
            f"insufficient_bars: avg dollar volume {avg_dollar_volume:,.0f} "
            f"< {settings.ai_min_avg_dollar_volume:,.0f}",
        )

    total_volume = float(df["volume"].sum())
    vwap = float(dollar_volume.sum() / total_volume) if total_volume > 0 else None
    last_close = float(df["close"].iloc[-1])
    first_open = float(df["open"].iloc[0])

    rsi = _last_valid(RSIIndicator(close=df["close"], window=14).rsi(), 2)
    atr = _last_valid(
        AverageTrueRange(high=df["high"], low=df["low"], close=df["close"], window=14).average_true_range(),
        4,
    )

    return MarketContext(
        ticker=ticker,
        bars_used=len(df),
        last_close=last_close,
        session_vwap=round(vwap, 4) if vwap is not None else None,
        pct_change=round((last_close - first_open) / first_open * 100, 3) if first_open else 0.0,
        avg_dollar_volume=round(avg_dollar_volume, 2),
        above_vwap=(last_close > vwap) if vwap is not None else None,
        rsi=rsi,
        atr=atr,
        recent_high=float(df["high"].tail(30).max()),
        recent_low=float(df["low"].tail(30).min()),
    )


class MarketContextBuilder:
    """Fetches bars from the broker data API and derives context."""

    def __init__(self, broker, settings: Settings | None = None):
        self._broker = broker
        self._settings = settings or get_settings()

    def build(self, ticker: str, now: datetime | None = None) -> MarketContext:
        now = now or datetime.now(timezone.utc)
        start = now - timedelta(minutes=self._settings.ai_context_lookback_minutes)
        bars = self._broker.get_bars(ticker, start=start)
        return compute_context(ticker, bars, self._settings)
