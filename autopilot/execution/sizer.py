"""Risk-tier position sizing."""

import math
from dataclasses import dataclass
from decimal import Decimal

from loguru import logger

from autopilot.config.constants import Tier
from autopilot.config.settings import Settings, get_settings


@dataclass
class PositionSize:
    """Calculated position size."""

    shares: int
    risk_amount: Decimal
    risk_per_share: Decimal
    tier: Tier
    risk_mult: float
    is_valid: bool
    rejection_reason: str | None = None


def tier_for_score(score: float | None, settings: Settings | None = None) -> Tier | None:
    """Map a quality score to the best tier whose threshold it meets."""
    if score is None:
        return None
    settings = settings or get_settings()
    for name, threshold in settings.tier_thresholds.items():
        if score >= threshold:
            return Tier(name)
    return None


class PositionSizer:
    """
    Position sizing from a quality tier.

    score -> tier (A/B/C) -> risk multiplier x base risk dollars, then
    quantity = floor(risk dollars / |entry - stop|), never less than one share.
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def calculate_tier_based(
        self,
        score: float | None,
        entry_price: Decimal,
        stop_loss_price: Decimal,
    ) -> PositionSize:
        """
        Size a trade for its tier.

        Scores below the lowest tier size as tier C.

        Args:
            score: Quality score in [0, 10]
            entry_price: Entry reference price
            stop_loss_price: Stop price
        """
        tier = tier_for_score(score, self._settings) or Tier.C
        risk_mult = self._settings.tier_risk_multipliers[tier.value]
        risk_amount = Decimal(str(self._settings.auto_entry_base_risk)) * Decimal(str(risk_mult))
        risk_per_share = abs(Decimal(str(entry_price)) - Decimal(str(stop_loss_price)))

        if risk_per_share <= 0:
            return PositionSize(
                shares=0,
                risk_amount=risk_amount,
                risk_per_share=risk_per_share,
                tier=tier,
                risk_mult=risk_mult,
                is_valid=False,
                rejection_reason="Stop loss equals entry price",
            )

        shares = max(1, math.floor(risk_amount / risk_per_share))

        logger.debug(
            f"Tier sizing: score={score} tier={tier.value} mult={risk_mult} "
            f"risk=${risk_amount} per_share=${risk_per_share} -> {shares} shares"
        )

        return PositionSize(
            shares=shares,
            risk_amount=risk_amount,
            risk_per_share=risk_per_share,
            tier=tier,
            risk_mult=risk_mult,
            is_valid=True,
        )
