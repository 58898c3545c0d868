"""Depth-bounded model of broker order payloads.

Bracket orders arrive as a parent with nested legs, and legs may nest again.
Payloads are walked with an explicit depth and node budget so a malformed or
self-similar payload cannot recurse without bound.
"""

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from autopilot.config.constants import ENGINE, STOP_ORDER_TYPES

MAX_LEG_NODES = 64


def _enum_value(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value)).lower()


def _field(order: Any, name: str) -> Any:
    if isinstance(order, dict):
        return order.get(name)
    return getattr(order, name, None)


def _to_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class OrderLeg:
    """One node of a broker order tree."""

    id: str
    symbol: str | None = None
    type: str | None = None
    status: str | None = None
    side: str | None = None
    qty: float | None = None
    filled_qty: float | None = None
    filled_price: float | None = None
    stop_price: float | None = None
    limit_price: float | None = None
    children: list["OrderLeg"] = field(default_factory=list)

    @property
    def is_filled(self) -> bool:
        return self.status == "filled" and (self.filled_price or 0) > 0

    @property
    def is_stop(self) -> bool:
        return self.type in STOP_ORDER_TYPES

    @classmethod
    def from_order(
        cls, order: Any, depth: int = 0, max_depth: int = ENGINE.MAX_LEG_DEPTH
    ) -> "OrderLeg | None":
        """
        Build from an alpaca-py Order model or its raw JSON form.

        Legs nested past max_depth are dropped, as are entries without an id
        or of an unexpected shape.

        Returns:
            The order tree, or None when the order itself has no id
        """
        if order is None or isinstance(order, (str, bytes, int, float)):
            return None
        order_id = _field(order, "id")
        if not order_id:
            return None
        children = []
        raw_legs = _field(order, "legs")
        if depth < max_depth and isinstance(raw_legs, (list, tuple)):
            for raw in raw_legs:
                child = cls.from_order(raw, depth + 1, max_depth)
                if child is not None:
                    children.append(child)
        return cls(
            id=str(order_id),
            symbol=_field(order, "symbol"),
            type=_enum_value(_field(order, "order_type") or _field(order, "type")),
            status=_enum_value(_field(order, "status")),
            side=_enum_value(_field(order, "side")),
            qty=_to_float(_field(order, "qty")),
            filled_qty=_to_float(_field(order, "filled_qty")),
            filled_price=_to_float(_field(order, "filled_avg_price")),
            stop_price=_to_float(_field(order, "stop_price")),
            limit_price=_to_float(_field(order, "limit_price")),
            children=children,
        )


def walk_legs(root: OrderLeg, max_depth: int = ENGINE.MAX_LEG_DEPTH) -> Iterator[OrderLeg]:
    """Yield root and its descendants breadth-first, within depth and node bounds."""
    queue: deque[tuple[OrderLeg, int]] = deque([(root, 0)])
    seen: set[str] = set()
    while queue and len(seen) < MAX_LEG_NODES:
        node, depth = queue.popleft()
        if node.id in seen:
            continue
        seen.add(node.id)
        yield node
        if depth < max_depth:
            queue.extend((child, depth + 1) for child in node.children)


def leg_ids(root: OrderLeg) -> list[str]:
    """Ids of every descendant leg, excluding the root."""
    return [leg.id for leg in walk_legs(root) if leg is not root]


def find_exit_fill(root: OrderLeg) -> OrderLeg | None:
    """First filled child leg, the stop or take-profit that closed the position."""
    for leg in walk_legs(root):
        if leg is not root and leg.is_filled:
            return leg
    return None


def find_stop_leg(root: OrderLeg) -> OrderLeg | None:
    for leg in walk_legs(root):
        if leg.is_stop:
            return leg
    return None


def find_take_profit_leg(root: OrderLeg) -> OrderLeg | None:
    for leg in walk_legs(root):
        if leg is not root and leg.type == "limit":
            return leg
    return None
