"""Exit fill extraction and realized P&L."""

from dataclasses import dataclass

from autopilot.config.constants import Side
from autopilot.execution.broker import FillActivity
from autopilot.execution.legs import OrderLeg, find_exit_fill
from autopilot.ledger.records import Trade


@dataclass
class ExitFill:
    """Where and how a position was closed."""

    exit_price: float
    qty: float | None
    close_reason: str
    entry_price: float | None = None
    source: str = "legs"


def _vwap(fills: list[FillActivity]) -> tuple[float, float] | None:
    qty = sum(f.qty for f in fills)
    if qty <= 0:
        return None
    return sum(f.price * f.qty for f in fills) / qty, qty


def fill_from_legs(order: OrderLeg) -> ExitFill | None:
    """Exit from a filled child leg of a bracket order."""
    leg = find_exit_fill(order)
    if leg is None:
        return None
    if leg.is_stop:
        reason = "stop_hit"
    elif leg.type == "limit":
        reason = "take_profit_hit"
    else:
        reason = "broker_leg_fill"
    return ExitFill(
        exit_price=leg.filled_price,
        qty=leg.filled_qty or order.filled_qty,
        close_reason=reason,
        entry_price=order.filled_price if order.is_filled else None,
        source="legs",
    )


def fill_from_activities(trade: Trade, activities: list[FillActivity]) -> ExitFill | None:
    """Exit from FILL activities keyed by the trade's order and leg ids."""
    entry_side = "buy" if trade.side == Side.LONG else "sell"
    entry_fills = [
        a for a in activities if a.order_id == trade.broker_order_id and a.side.startswith(entry_side)
    ]
    exit_fills = [
        a
        for a in activities
        if a.order_id != trade.broker_order_id and not a.side.startswith(entry_side)
    ]
    exit_vwap = _vwap(exit_fills)
    if exit_vwap is None:
        return None

    exit_ids = {a.order_id for a in exit_fills}
    if trade.stop_order_id and trade.stop_order_id in exit_ids:
        reason = "stop_hit"
    elif trade.take_profit_order_id and trade.take_profit_order_id in exit_ids:
        reason = "take_profit_hit"
    else:
        reason = "exit_fill"

    entry_vwap = _vwap(entry_fills)
    return ExitFill(
        exit_price=round(exit_vwap[0], 4),
        qty=exit_vwap[1],
        close_reason=reason,
        entry_price=round(entry_vwap[0], 4) if entry_vwap else None,
        source="activities",
    )


def realized_pnl(
    side: Side,
    entry_price: float,
    exit_price: float,
    qty: float,
    stop_price: float | None = None,
) -> tuple[float, float | None]:
    """
    Realized P&L and R-multiple.

    pnl = (exit - entry) * qty * sign, R = pnl / (|entry - stop| * qty).
    R is None without a usable stop distance.
    """
    pnl = (exit_price - entry_price) * qty * side.sign
    r_multiple = None
    if stop_price is not None:
        risk = abs(entry_price - stop_price) * qty
        if risk > 0:
            r_multiple = round(pnl / risk, 4)
    return round(pnl, 2), r_multiple
