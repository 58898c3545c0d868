"""Ledger record models for signals and trades."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from autopilot.config.constants import Side, SignalStatus, TradeStatus


class LedgerRecord(BaseModel):
    """Common fields of every ledger record."""

    model_config = ConfigDict(use_enum_values=False, validate_assignment=False)

    id: str
    ticker: str
    created_at: datetime
    updated_at: datetime | None = None

    def changed_from(self, other: "LedgerRecord") -> bool:
        """True when anything other than updated_at differs."""
        exclude = {"updated_at"}
        return self.model_dump(exclude=exclude) != other.model_dump(exclude=exclude)


class Signal(LedgerRecord):
    """A candidate setup awaiting or holding a quality score."""

    side: Side | None = None
    entry_price: float | None = None
    stop_price: float | None = None
    target_price: float | None = None
    timeframe: str | None = None
    source: str | None = None
    status: SignalStatus = SignalStatus.PENDING

    ai_score: float | None = None
    ai_grade: str | None = None
    ai_summary: str | None = None
    ai_direction: str | None = None
    long_score: float | None = None
    short_score: float | None = None
    confidence: float | None = None
    qualified: bool | None = None
    qualify_reason: str | None = None
    scored_at: datetime | None = None

    scoring_started_at: datetime | None = None
    scoring_lock_until: datetime | None = None
    scoring_attempts: int = 0

    error: str | None = None
    error_at: datetime | None = None
    error_meta: dict[str, Any] | None = None
    archived_at: datetime | None = None

    def clear_score_fields(self) -> None:
        """Drop everything derived from a score."""
        self.ai_score = None
        self.ai_grade = None
        self.ai_direction = None
        self.long_score = None
        self.short_score = None
        self.confidence = None
        self.qualified = None
        self.qualify_reason = None
        self.scored_at = None

    def clear_claim(self) -> None:
        self.scoring_started_at = None
        self.scoring_lock_until = None


class TradeAi(BaseModel):
    """Quality score snapshot carried on a trade."""

    score: float | None = None
    grade: str | None = None
    tier: str | None = None
    risk_mult: float | None = None


class Trade(LedgerRecord):
    """A ledger record for an intended or live broker position."""

    side: Side
    entry_price: float | None = None
    stop_price: float | None = None
    target_price: float | None = None
    quantity: float | None = None
    status: TradeStatus = TradeStatus.AUTO_PENDING
    source: str | None = None
    signal_id: str | None = None

    ai: TradeAi = Field(default_factory=TradeAi)
    scored_at: datetime | None = None
    session_tag: str | None = None
    et_date: str | None = None

    broker_order_id: str | None = None
    stop_order_id: str | None = None
    take_profit_order_id: str | None = None
    broker_status: str | None = None
    filled_qty: float | None = None
    avg_fill_price: float | None = None
    risk_dollars: float | None = None

    opened_at: datetime | None = None
    closed_at: datetime | None = None
    exit_price: float | None = None
    realized_pnl: float | None = None
    realized_r: float | None = None
    close_reason: str | None = None

    error: str | None = None
    invalid_reason: str | None = None
    last_reconciled_at: datetime | None = None

    @property
    def risk_per_share(self) -> float | None:
        if self.entry_price is None or self.stop_price is None:
            return None
        return abs(self.entry_price - self.stop_price)
