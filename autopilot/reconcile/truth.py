"""Snapshot of the broker's authoritative positions and open orders."""

from collections import defaultdict
from dataclasses import dataclass, field

from autopilot.config.constants import Side
from autopilot.execution.broker import Position
from autopilot.execution.legs import OrderLeg, walk_legs


def exit_order_side(side: Side) -> str:
    """Broker order side that reduces a position of this direction."""
    return "sell" if side == Side.LONG else "buy"


@dataclass
class BrokerTruth:
    """Positions and open orders fetched together at the start of a pass."""

    positions: list[Position]
    open_orders: list[OrderLeg]
    _positions_by_symbol: dict[str, Position] = field(init=False, default_factory=dict)
    _orders_by_symbol: dict[str, list[OrderLeg]] = field(init=False, default_factory=dict)
    _status_by_id: dict[str, str | None] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self._positions_by_symbol = {p.symbol.upper(): p for p in self.positions}
        by_symbol: dict[str, list[OrderLeg]] = defaultdict(list)
        for order in self.open_orders:
            for leg in walk_legs(order):
                self._status_by_id[leg.id] = leg.status
                symbol = (leg.symbol or order.symbol or "").upper()
                if symbol:
                    by_symbol[symbol].append(leg)
        self._orders_by_symbol = dict(by_symbol)

    @property
    def open_order_ids(self) -> set[str]:
        return set(self._status_by_id)

    def position(self, symbol: str) -> Position | None:
        return self._positions_by_symbol.get(symbol.upper())

    def orders_for(self, symbol: str) -> list[OrderLeg]:
        """Open orders and their legs for a symbol, flattened."""
        return self._orders_by_symbol.get(symbol.upper(), [])

    def status_of(self, order_id: str | None) -> str | None:
        return self._status_by_id.get(order_id) if order_id else None

    def find_stop(self, symbol: str, side: Side) -> OrderLeg | None:
        """Open stop-type order protecting a position of this direction."""
        wanted = exit_order_side(side)
        for leg in self.orders_for(symbol):
            if leg.is_stop and leg.stop_price and leg.side in (wanted, None):
                return leg
        return None

    def find_take_profit(self, symbol: str, side: Side) -> OrderLeg | None:
        wanted = exit_order_side(side)
        for leg in self.orders_for(symbol):
            if leg.type == "limit" and leg.limit_price and leg.side == wanted:
                return leg
        return None
