"""Candidate selection for the entry engine."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

from autopilot.config.constants import TradeStatus
from autopilot.config.settings import Settings, get_settings
from autopilot.ledger.records import Trade
from autopilot.risk.sessions import et_date, session_tag


@dataclass
class Eligibility:
    """Verdict for one canonical candidate."""

    eligible: bool
    reason: str | None = None
    needs_rescore: bool = False
    age_minutes: float | None = None


def _recency(trade: Trade) -> datetime:
    return trade.scored_at or trade.created_at


def pick_canonical_by_ticker(trades: list[Trade]) -> tuple[list[Trade], list[Trade]]:
    """Split AUTO_PENDING trades into the newest per ticker and older duplicates."""
    by_ticker: dict[str, list[Trade]] = defaultdict(list)
    for trade in trades:
        if trade.status == TradeStatus.AUTO_PENDING:
            by_ticker[trade.ticker.upper()].append(trade)

    canonical, duplicates = [], []
    for group in by_ticker.values():
        group.sort(key=lambda t: (_recency(t), t.created_at), reverse=True)
        canonical.append(group[0])
        duplicates.extend(group[1:])
    canonical.sort(key=_recency, reverse=True)
    return canonical, duplicates


def evaluate_eligibility(
    trade: Trade,
    now: datetime,
    allow_carryover: bool | None = None,
    settings: Settings | None = None,
) -> Eligibility:
    """
    Check one canonical candidate, in order: session, shape, score, age.

    A trade scored more than the rescore threshold ago but within the max
    age is eligible only after a fresh score.
    """
    settings = settings or get_settings()
    if allow_carryover is None:
        allow_carryover = settings.auto_entry_allow_carryover

    reference = _recency(trade)
    if not allow_carryover:
        trade_date = trade.et_date or et_date(trade.created_at)
        if trade_date != et_date(now):
            return Eligibility(False, "stale_session")
        trade_session = trade.session_tag or session_tag(trade.created_at).value
        if trade_session != session_tag(now).value:
            return Eligibility(False, "carryover_session")

    if not trade.ticker or trade.side is None:
        return Eligibility(False, "invalid_trade")

    if trade.ai.score is None or trade.scored_at is None:
        return Eligibility(False, "not_scored")

    age = (now - reference) / timedelta(minutes=1)
    if age > settings.auto_entry_max_age_minutes:
        return Eligibility(False, "stale_trade", age_minutes=age)
    if age > settings.auto_entry_rescore_after_minutes:
        return Eligibility(True, needs_rescore=True, age_minutes=age)
    return Eligibility(True, age_minutes=age)
