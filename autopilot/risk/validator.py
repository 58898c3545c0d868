"""Pre-submission validation of AUTO_PENDING trades."""

import math
from dataclasses import dataclass, field

from autopilot.config.constants import Side, TradeStatus
from autopilot.ledger.records import Trade


@dataclass
class ValidationResult:
    """Result of trade validation."""

    is_valid: bool
    reason: str
    warnings: list[str] = field(default_factory=list)
    failure_code: str | None = None  # e.g., "missing_field", "price_direction"


def _positive(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


class TradeValidator:
    """
    Validates a trade before any broker call.

    Checks:
    - Status is AUTO_PENDING
    - Ticker, side and prices are present and positive
    - Prices are ordered for the side (LONG: stop < entry < target)
    """

    def validate_trade(self, trade: Trade) -> ValidationResult:
        if trade.status != TradeStatus.AUTO_PENDING:
            return ValidationResult(False, f"Status {trade.status.value} is not AUTO_PENDING", failure_code="invalid_status")

        if not trade.ticker or not trade.ticker.strip():
            return ValidationResult(False, "Missing ticker", failure_code="missing_field")

        missing = [
            name
            for name in ("entry_price", "stop_price", "target_price")
            if not _positive(getattr(trade, name))
        ]
        if missing:
            return ValidationResult(
                False, f"Missing or non-positive: {', '.join(missing)}", failure_code="missing_field"
            )

        entry, stop, target = trade.entry_price, trade.stop_price, trade.target_price
        if trade.side == Side.LONG and not (stop < entry < target):
            return ValidationResult(
                False,
                f"LONG requires stop < entry < target (got {stop} / {entry} / {target})",
                failure_code="price_direction",
            )
        if trade.side == Side.SHORT and not (target < entry < stop):
            return ValidationResult(
                False,
                f"SHORT requires target < entry < stop (got {target} / {entry} / {stop})",
                failure_code="price_direction",
            )

        warnings = []
        if abs(entry - stop) / entry > 0.2:
            warnings.append(f"Stop distance {abs(entry - stop):.2f} exceeds 20% of entry")
        return ValidationResult(True, "Trade validated", warnings=warnings)
