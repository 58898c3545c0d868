"""Decision price resolution, tick quantization and bracket construction."""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Literal

from autopilot.config.constants import ENGINE, Side
from autopilot.exceptions import PricingError
from autopilot.execution.broker import Quote

RoundMode = Literal["nearest", "floor", "ceil"]

_ROUNDING = {
    "nearest": ROUND_HALF_UP,
    "floor": ROUND_FLOOR,
    "ceil": ROUND_CEILING,
}


def tick_size(price: Decimal | float) -> Decimal:
    """Minimum price increment for an equity at this price."""
    return ENGINE.SUB_DOLLAR_TICK if Decimal(str(price)) < 1 else ENGINE.DEFAULT_TICK


def quantize_price(price: Decimal | float, mode: RoundMode = "nearest", tick: Decimal | None = None) -> Decimal:
    """Snap a price onto the tick grid.

    Works in tick units so the result is an exact integer multiple of tick.
    """
    value = Decimal(str(price))
    step = tick or tick_size(value)
    units = (value / step).quantize(Decimal("1"), rounding=_ROUNDING[mode])
    return (units * step).quantize(step)


def is_on_tick(price: Decimal, tick: Decimal) -> bool:
    return (price / tick) == (price / tick).to_integral_value()


@dataclass
class DecisionPrice:
    """Price used as the bracket entry reference, with where it came from."""

    price: Decimal
    source: Literal["mid", "last", "seed"]


def resolve_decision_price(quote: Quote | None, seed_price: float | None) -> DecisionPrice:
    """Pick bid/ask mid, then last trade, then the trade's own entry price.

    Raises:
        PricingError: when no positive price is available
    """
    if quote is not None:
        mid = quote.mid
        if mid and mid > 0:
            return DecisionPrice(Decimal(str(mid)), "mid")
        if quote.last and quote.last > 0:
            return DecisionPrice(Decimal(str(quote.last)), "last")
    if seed_price and seed_price > 0:
        return DecisionPrice(Decimal(str(seed_price)), "seed")
    raise PricingError("no_decision_price")


@dataclass
class Bracket:
    """Entry reference plus quantized stop-loss and take-profit."""

    entry: Decimal
    stop: Decimal
    take_profit: Decimal
    tick: Decimal
    stop_distance: Decimal

    @property
    def risk_per_share(self) -> Decimal:
        return abs(self.entry - self.stop)


def normalize_stop_price(side: Side, stop: Decimal | float, tick: Decimal) -> Decimal:
    """Round a stop away from the entry so it never moves inside the risk."""
    return quantize_price(stop, "floor" if side == Side.LONG else "ceil", tick)


def compute_bracket(
    side: Side,
    decision_price: Decimal,
    stop_distance: Decimal,
    reward_risk: float,
) -> Bracket:
    """
    Build stop and take-profit off the resolved entry and the original stop distance.

    LONG stops round down and SHORT stops round up, take-profit rounds to the
    nearest tick. The result is checked after quantization.

    Raises:
        PricingError: when the quantized bracket is not strictly ordered
    """
    if decision_price <= 0:
        raise PricingError("invalid_decision_price")
    if stop_distance <= 0:
        raise PricingError("invalid_stop_distance")
    if reward_risk <= 0:
        raise PricingError("invalid_reward_risk")

    tick = tick_size(decision_price)
    entry = quantize_price(decision_price, "nearest", tick)
    rr = Decimal(str(reward_risk))

    if side == Side.LONG:
        raw_stop = entry - stop_distance
        raw_tp = entry + stop_distance * rr
    else:
        raw_stop = entry + stop_distance
        raw_tp = entry - stop_distance * rr

    stop = normalize_stop_price(side, raw_stop, tick)
    take_profit = quantize_price(raw_tp, "nearest", tick)

    bracket = Bracket(
        entry=entry,
        stop=stop,
        take_profit=take_profit,
        tick=tick,
        stop_distance=stop_distance,
    )
    validate_bracket(side, bracket)
    return bracket


def validate_bracket(side: Side, bracket: Bracket) -> None:
    """Check direction and tick alignment of a bracket."""
    if bracket.stop <= 0 or bracket.take_profit <= 0:
        raise PricingError("non_positive_bracket_price")
    if side == Side.LONG and not (bracket.stop < bracket.entry < bracket.take_profit):
        raise PricingError(
            f"invalid_bracket: LONG requires stop < entry < target, got "
            f"{bracket.stop} / {bracket.entry} / {bracket.take_profit}"
        )
    if side == Side.SHORT and not (bracket.take_profit < bracket.entry < bracket.stop):
        raise PricingError(
            f"invalid_bracket: SHORT requires target < entry < stop, got "
            f"{bracket.take_profit} / {bracket.entry} / {bracket.stop}"
        )
    for price in (bracket.stop, bracket.take_profit):
        if not is_on_tick(price, bracket.tick):
            raise PricingError(f"off_tick_price: {price} (tick {bracket.tick})")
