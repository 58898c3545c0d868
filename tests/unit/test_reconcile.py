"""Unit tests for the broker reconciliation loop."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import redis

from autopilot.config.constants import ENGINE, Side, TradeStatus
from autopilot.coordination.store import Lease
from autopilot.exceptions import BrokerError, BrokerNotFoundError
from autopilot.execution.broker import FillActivity, Position
from autopilot.execution.legs import OrderLeg
from autopilot.ledger.records import Trade
from autopilot.reconcile.fills import fill_from_activities, realized_pnl
from autopilot.reconcile.loop import BrokerReconciler

NOW = datetime(2026, 10, 14, 18, 0, tzinfo=timezone.utc)


def open_trade(trade_id: str = "t1", ticker: str = "ABC", **kwargs) -> Trade:
    fields = dict(
        id=trade_id,
        ticker=ticker,
        side=Side.LONG,
        entry_price=100.0,
        stop_price=95.0,
        target_price=105.0,
        quantity=20.0,
        status=TradeStatus.OPEN,
        created_at=NOW - timedelta(hours=3),
        opened_at=NOW - timedelta(hours=3),
        broker_order_id="ord-1",
        stop_order_id="ord-1-sl",
        take_profit_order_id="ord-1-tp",
    )
    fields.update(kwargs)
    return Trade(**fields)


def bracket(status: str = "filled", stop_status: str = "filled", tp_status: str = "canceled") -> OrderLeg:
    return OrderLeg(
        id="ord-1",
        symbol="ABC",
        type="market",
        status=status,
        side="buy",
        qty=20,
        filled_qty=20 if status == "filled" else 0,
        filled_price=100.0 if status == "filled" else None,
        children=[
            OrderLeg(
                id="ord-1-sl",
                symbol="ABC",
                type="stop",
                status=stop_status,
                side="sell",
                filled_qty=20 if stop_status == "filled" else 0,
                filled_price=95.0 if stop_status == "filled" else None,
                stop_price=95.0,
            ),
            OrderLeg(id="ord-1-tp", symbol="ABC", type="limit", status=tp_status, side="sell", limit_price=105.0),
        ],
    )


def make_reconciler(ledger, broker, redis_client, settings) -> BrokerReconciler:
    reconciler = BrokerReconciler(ledger, broker, redis_client, settings)
    reconciler._get_now = lambda: NOW
    return reconciler


class TestStaleTrades:
    """Tests for OPEN trades with no broker presence."""

    def test_not_found_without_fills_closes_with_diagnostics(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.get_order.side_effect = BrokerNotFoundError("order ord-1 not found")

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.ok
        assert result.closed == 1
        stored = ledger.trades.get("t1")
        assert stored.status == TradeStatus.CLOSED
        assert "order_id=ord-1" in stored.close_reason
        assert "leg_ids=[ord-1-sl, ord-1-tp]" in stored.close_reason
        assert "http_status=404" in stored.close_reason
        assert stored.closed_at == NOW

    def test_not_found_with_fill_activities(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.get_order.side_effect = BrokerNotFoundError("order ord-1 not found")
        broker.list_fill_activities.return_value = [
            FillActivity("a1", "ord-1", "ABC", "buy", 20, 100.0),
            FillActivity("a2", "ord-1-tp", "ABC", "sell", 20, 105.0),
        ]

        asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        stored = ledger.trades.get("t1")
        assert stored.close_reason == "take_profit_hit"
        assert stored.exit_price == 105.0
        assert stored.realized_pnl == 100.0
        assert stored.realized_r == 1.0

    def test_filled_stop_leg(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.get_order.return_value = bracket()

        asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        stored = ledger.trades.get("t1")
        assert stored.status == TradeStatus.CLOSED
        assert stored.close_reason == "stop_hit"
        assert stored.exit_price == 95.0
        assert stored.realized_pnl == -100.0
        assert stored.realized_r == -1.0

    def test_unfilled_terminal_parent(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.get_order.return_value = bracket(status="canceled", stop_status="canceled")

        asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        stored = ledger.trades.get("t1")
        assert stored.close_reason == "broker_canceled_unfilled"
        assert stored.realized_pnl == 0.0

    def test_non_terminal_order_left_open(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.get_order.return_value = bracket(status="new", stop_status="held")

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.closed == 0
        assert ledger.trades.get("t1").status == TradeStatus.OPEN

    def test_lookup_failure_degrades_single_trade(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade(), open_trade("t2", ticker="XYZ", broker_order_id="ord-2")])

        def get_order(order_id):
            if order_id == "ord-1":
                raise BrokerError("gateway timeout", status_code=504)
            raise BrokerNotFoundError("missing")

        broker.get_order.side_effect = get_order

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.ok
        assert result.degraded == 1
        assert ledger.trades.get("t1").status == TradeStatus.OPEN
        assert ledger.trades.get("t2").status == TradeStatus.CLOSED

    def test_missing_order_id_closes_with_reason(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade(broker_order_id=None)])

        asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        stored = ledger.trades.get("t1")
        assert stored.status == TradeStatus.CLOSED
        assert stored.close_reason.startswith("reconciled_not_in_broker: order_id=None")
        assert "leg_ids=[ord-1-sl, ord-1-tp]" in stored.close_reason
        broker.get_order.assert_not_called()
        broker.list_fill_activities.assert_called_once_with(["ord-1-sl", "ord-1-tp"])

    def test_missing_order_id_uses_leg_fills(self, ledger, broker, redis_client, settings):
        """A backfilled trade knows only its stop id; its stop fill still prices the close."""
        ledger.trades.write_all(
            [open_trade(broker_order_id=None, stop_order_id="stop-9", take_profit_order_id=None)]
        )
        broker.list_fill_activities.return_value = [FillActivity("a9", "stop-9", "ABC", "sell", 20, 95.0)]

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.closed == 1
        stored = ledger.trades.get("t1")
        assert stored.close_reason == "stop_hit"
        assert stored.exit_price == 95.0
        assert stored.realized_pnl == -100.0
        assert stored.realized_r == -1.0
        broker.list_fill_activities.assert_called_once_with(["stop-9"])

    def test_open_order_keeps_trade(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.list_open_orders.return_value = [bracket(status="new", stop_status="held", tp_status="new")]

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.closed == 0
        assert ledger.trades.get("t1").broker_status == "new"
        broker.get_order.assert_not_called()


class TestBrokerPositions:
    """Tests for broker positions overriding local state."""

    def test_untracked_position_backfilled_with_stop(self, ledger, broker, redis_client, settings):
        broker.list_positions.return_value = [Position("XYZ", Decimal("10"), Decimal("50.00"), Side.LONG)]
        broker.list_open_orders.return_value = [
            OrderLeg(id="stop-1", symbol="XYZ", type="stop", status="new", side="sell", stop_price=48.5)
        ]

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.backfilled == 1
        trades = ledger.trades.read_all()
        assert len(trades) == 1
        synthesized = trades[0]
        assert synthesized.ticker == "XYZ"
        assert synthesized.status == TradeStatus.OPEN
        assert synthesized.stop_price == 48.5
        assert synthesized.stop_order_id == "stop-1"
        assert synthesized.entry_price == 50.0
        assert synthesized.quantity == 10.0
        assert synthesized.source == "broker_backfill"

    def test_untracked_position_without_stop_is_invalid(self, ledger, broker, redis_client, settings):
        broker.list_positions.return_value = [Position("XYZ", Decimal("10"), Decimal("50.00"), Side.LONG)]

        asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        synthesized = ledger.trades.read_all()[0]
        assert synthesized.status == TradeStatus.ERROR
        assert synthesized.error == "INVALID"
        assert synthesized.invalid_reason == "missing_stop_price"

    def test_position_reopens_closed_fields(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all(
            [open_trade(close_reason="stale", closed_at=NOW, error="old", stop_price=None, stop_order_id=None)]
        )
        broker.list_positions.return_value = [Position("ABC", Decimal("20"), Decimal("100.10"), Side.LONG)]
        broker.list_open_orders.return_value = [
            OrderLeg(id="sl-9", symbol="ABC", type="stop", status="new", side="sell", stop_price=94.5)
        ]

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.synced == 1
        stored = ledger.trades.get("t1")
        assert stored.status == TradeStatus.OPEN
        assert stored.close_reason is None
        assert stored.closed_at is None
        assert stored.error is None
        assert stored.stop_price == 94.5
        assert stored.avg_fill_price == 100.1

    def test_missing_stop_recovers_when_stop_appears(self, ledger, broker, redis_client, settings):
        broker.list_positions.return_value = [Position("XYZ", Decimal("10"), Decimal("50.00"), Side.LONG)]
        reconciler = make_reconciler(ledger, broker, redis_client, settings)
        asyncio.run(reconciler.run())

        broker.list_open_orders.return_value = [
            OrderLeg(id="stop-1", symbol="XYZ", type="stop", status="new", side="sell", stop_price=48.5)
        ]
        second = asyncio.run(reconciler.run())

        trades = ledger.trades.read_all()
        assert second.backfilled == 0
        assert len(trades) == 1
        assert trades[0].status == TradeStatus.OPEN
        assert trades[0].stop_price == 48.5


class TestReconcileRun:
    """Tests for run-level behavior."""

    def test_second_pass_is_idempotent(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade(), open_trade("t2", ticker="XYZ", broker_order_id="ord-2")])
        broker.list_positions.return_value = [
            Position("XYZ", Decimal("20"), Decimal("100.00"), Side.LONG),
            Position("QQQ", Decimal("5"), Decimal("400.00"), Side.SHORT),
        ]
        broker.get_order.side_effect = BrokerNotFoundError("missing")
        reconciler = make_reconciler(ledger, broker, redis_client, settings)

        first = asyncio.run(reconciler.run())
        snapshot = {t.id: t.model_dump() for t in ledger.trades.read_all()}
        reconciler._get_now = lambda: NOW + timedelta(minutes=5)
        second = asyncio.run(reconciler.run())

        assert first.closed + first.synced + first.backfilled > 0
        assert (second.closed, second.synced, second.backfilled) == (0, 0, 0)
        assert {t.id: t.model_dump() for t in ledger.trades.read_all()} == snapshot

    def test_broker_truth_failure_aborts_untouched(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.list_positions.side_effect = BrokerError("service unavailable", status_code=503)

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.ok is False
        assert result.reason == "broker_truth_failed"
        assert ledger.trades.get("t1").status == TradeStatus.OPEN
        broker.get_order.assert_not_called()

    def test_dry_run_persists_nothing(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all([open_trade()])
        broker.get_order.side_effect = BrokerNotFoundError("missing")

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run(dry_run=True))

        assert result.closed == 1
        assert ledger.trades.get("t1").status == TradeStatus.OPEN

    def test_concurrent_pass_skips(self, ledger, broker, redis_client, settings):
        Lease(redis_client).acquire(ENGINE.RECONCILE_LOCK_KEY, 60)

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).run())

        assert result.ok
        assert result.reason == "already_running"
        broker.list_positions.assert_not_called()

    def test_finalize_closes_backfills_pnl(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all(
            [open_trade(status=TradeStatus.CLOSED, closed_at=NOW, close_reason="reconciled_not_in_broker")]
        )
        broker.get_order.return_value = bracket(stop_status="canceled", tp_status="filled")
        broker.get_order.return_value.children[1].filled_qty = 20
        broker.get_order.return_value.children[1].filled_price = 105.0

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).finalize_closes())

        assert result.synced == 1
        stored = ledger.trades.get("t1")
        assert stored.realized_pnl == 100.0
        assert stored.close_reason == "reconciled_not_in_broker"

    def test_finalize_closes_without_parent_order(self, ledger, broker, redis_client, settings):
        ledger.trades.write_all(
            [
                open_trade(
                    status=TradeStatus.CLOSED,
                    closed_at=NOW,
                    close_reason="reconciled_not_in_broker",
                    broker_order_id=None,
                    stop_order_id="stop-9",
                    take_profit_order_id=None,
                )
            ]
        )
        broker.list_fill_activities.return_value = [FillActivity("a9", "stop-9", "ABC", "sell", 20, 95.0)]

        result = asyncio.run(make_reconciler(ledger, broker, redis_client, settings).finalize_closes())

        assert result.synced == 1
        assert ledger.trades.get("t1").realized_pnl == -100.0
        broker.get_order.assert_not_called()

    def test_lock_store_outage_returns_structured_failure(self, ledger, broker, settings):
        down = MagicMock()
        down.set.side_effect = redis.ConnectionError("down")
        ledger.trades.write_all([open_trade()])

        result = asyncio.run(make_reconciler(ledger, broker, down, settings).run())

        assert result.ok is False
        assert result.reason == "coordination_failed"
        broker.list_positions.assert_not_called()
        assert ledger.trades.get("t1").status == TradeStatus.OPEN


class TestFillMath:
    """Tests for fill extraction and P&L."""

    def test_short_pnl(self):
        assert realized_pnl(Side.SHORT, 50.0, 48.0, 10, 51.0) == (20.0, 2.0)

    def test_r_needs_stop(self):
        assert realized_pnl(Side.LONG, 10.0, 11.0, 5) == (5.0, None)

    def test_activity_vwap(self):
        trade = open_trade()
        fill = fill_from_activities(
            trade,
            [
                FillActivity("a1", "ord-1", "ABC", "buy", 20, 100.0),
                FillActivity("a2", "ord-1-sl", "ABC", "sell", 10, 95.0),
                FillActivity("a3", "ord-1-sl", "ABC", "sell", 10, 94.0),
            ],
        )
        assert fill.close_reason == "stop_hit"
        assert fill.exit_price == 94.5
        assert fill.qty == 20
        assert fill.entry_price == 100.0

    def test_no_exit_fill(self):
        trade = open_trade()
        assert fill_from_activities(trade, [FillActivity("a1", "ord-1", "ABC", "buy", 20, 100.0)]) is None
