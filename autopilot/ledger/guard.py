"""Write guard keeping SCORED signals consistent with their score."""

import math
from datetime import datetime, timezone

from loguru import logger

from autopilot.config.constants import SignalStatus
from autopilot.ledger.records import Signal


def score_is_valid(score: float | None) -> bool:
    """A persisted score must be finite and within [0, 10]."""
    if score is None:
        return False
    try:
        value = float(score)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and 0.0 <= value <= 10.0


def guard_signal(signal: Signal) -> bool:
    """Rewrite a SCORED signal with an invalid score to ERROR.

    Returns True when the signal was rewritten.
    """
    if signal.status != SignalStatus.SCORED or score_is_valid(signal.ai_score):
        return False

    logger.warning(
        f"Signal {signal.id} ({signal.ticker}) SCORED with invalid score "
        f"{signal.ai_score!r}, rewriting to ERROR"
    )
    now = datetime.now(timezone.utc)
    signal.status = SignalStatus.ERROR
    signal.error = "invalid_score"
    signal.error_at = now
    signal.ai_summary = f"invalid_score: {signal.ai_score!r}"
    signal.clear_score_fields()
    signal.clear_claim()
    signal.updated_at = now
    return True


def guard_signals(signals: list[Signal]) -> list[str]:
    """Apply the guard to a batch. Returns ids of rewritten signals."""
    return [s.id for s in signals if guard_signal(s)]
