"""Order execution: broker integration, pricing, sizing and the entry engine."""

from autopilot.execution.broker import AlpacaBroker, FillActivity, OrderResult, Position, Quote
from autopilot.execution.entry import AutoEntryEngine
from autopilot.execution.legs import OrderLeg, walk_legs
from autopilot.execution.pricing import Bracket, compute_bracket, quantize_price, tick_size
from autopilot.execution.sizer import PositionSizer, tier_for_score

__all__ = [
    "AlpacaBroker",
    "AutoEntryEngine",
    "OrderResult",
    "Position",
    "Quote",
    "FillActivity",
    "OrderLeg",
    "walk_legs",
    "Bracket",
    "compute_bracket",
    "quantize_price",
    "tick_size",
    "PositionSizer",
    "tier_for_score",
]
