"""Risk management: admission gates, validation and session helpers."""

from autopilot.risk.guardrails import EntryGuardrails, GateReport
from autopilot.risk.sessions import ET, et_date, session_tag
from autopilot.risk.validator import TradeValidator, ValidationResult

__all__ = [
    "EntryGuardrails",
    "GateReport",
    "TradeValidator",
    "ValidationResult",
    "ET",
    "et_date",
    "session_tag",
]
