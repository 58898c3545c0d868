"""Broker reconciliation loop.

Compares every locally OPEN trade with broker truth and repairs divergence:
- closes trades the broker no longer knows, with realized P&L when a fill
  can be found and a traceable diagnostic reason when it cannot;
- forces trades back to OPEN whenever the broker holds a position;
- backfills missing entry, quantity and stop from the broker;
- synthesizes trades for untracked broker positions.

All mutations of one pass are persisted in a single ledger write.
"""

import asyncio
import uuid
from datetime import datetime, timezone

import redis
from loguru import logger

from autopilot.config.constants import ENGINE, TERMINAL_ORDER_STATUSES, Side, TradeStatus
from autopilot.config.settings import Settings, get_settings
from autopilot.coordination.store import Lease
from autopilot.exceptions import BrokerError, BrokerNotFoundError, BrokerTruthError, LedgerError
from autopilot.execution.broker import AlpacaBroker, Position
from autopilot.execution.legs import leg_ids
from autopilot.ledger.records import Trade
from autopilot.ledger.store import Ledger
from autopilot.monitoring.metrics import ReconcileResult, Stopwatch
from autopilot.reconcile.fills import ExitFill, fill_from_activities, fill_from_legs, realized_pnl
from autopilot.reconcile.truth import BrokerTruth
from autopilot.risk.sessions import et_date, session_tag

MISSING_STOP = "missing_stop_price"


def _is_tracked(trade: Trade) -> bool:
    """Trade represents live exposure (healthy, or held without a stop)."""
    return trade.status == TradeStatus.OPEN or (
        trade.status == TradeStatus.ERROR and trade.invalid_reason == MISSING_STOP
    )


def _known_leg_ids(trade: Trade) -> list[str]:
    return [i for i in (trade.stop_order_id, trade.take_profit_order_id) if i]


class BrokerReconciler:
    """
    Keeps the trade ledger aligned with the broker.

    Sole owner of OPEN -> CLOSED. A run-level lock keeps passes from
    overlapping; a failed broker-truth fetch aborts the pass untouched.
    """

    def __init__(
        self,
        ledger: Ledger,
        broker: AlpacaBroker,
        redis_client: redis.Redis,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._ledger = ledger
        self._broker = broker
        self._lease = Lease(redis_client)

    def _get_now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def run(
        self,
        limit: int | None = None,
        dry_run: bool = False,
        deadline_ms: int | None = None,
        close_reason: str | None = None,
        run_source: str = "api",
    ) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            limit: Max trades to examine (defaults to settings)
            dry_run: Compute mutations without persisting them
            deadline_ms: Wall-clock budget for per-trade lookups
            close_reason: Prefix for closes without a fill
            run_source: Caller tag for logs
        """
        budget = deadline_ms / 1000 if deadline_ms else self._settings.reconcile_deadline_seconds
        watch = Stopwatch(budget)
        result = ReconcileResult(dry_run=dry_run)
        limit = max(1, min(limit or self._settings.reconcile_max_trades, self._settings.reconcile_max_trades))
        close_reason = close_reason or self._settings.reconcile_default_close_reason

        try:
            token = self._lease.acquire(ENGINE.RECONCILE_LOCK_KEY, self._settings.reconcile_lock_ttl_seconds)
        except redis.RedisError as e:
            logger.error(f"Reconciliation could not take its run lock ({run_source}): {e}")
            result.fail(f"coordination_failed: {e}", reason="coordination_failed")
            result.duration_ms = watch.elapsed_ms()
            return result
        if token is None:
            result.reason = "already_running"
            result.duration_ms = watch.elapsed_ms()
            logger.info(f"Reconciliation already running, skipping ({run_source})")
            return result

        try:
            await self._run(result, watch, limit, dry_run, close_reason)
        except LedgerError as e:
            logger.error(f"Reconciliation aborted: {e}")
            result.fail(str(e), reason="ledger_failed")
        except Exception as e:
            logger.exception(f"Reconciliation crashed: {e}")
            result.fail(f"internal_error: {e}")
        finally:
            try:
                self._lease.release(ENGINE.RECONCILE_LOCK_KEY, token)
            except redis.RedisError as e:
                logger.warning(f"Reconciliation lock left to expire: {e}")

        result.duration_ms = watch.elapsed_ms()
        logger.info(
            f"Reconciliation done ({run_source}): processed={result.processed} closed={result.closed} "
            f"synced={result.synced} backfilled={result.backfilled} degraded={result.degraded} "
            f"dry_run={dry_run}"
        )
        return result

    async def fetch_truth(self) -> BrokerTruth:
        """Positions and open orders fetched together.

        Raises:
            BrokerTruthError: when either call fails
        """
        try:
            positions = await asyncio.to_thread(self._broker.list_positions)
            open_orders = await asyncio.to_thread(self._broker.list_open_orders)
        except BrokerError as e:
            raise BrokerTruthError(f"broker_truth_failed: {e}", status_code=e.status_code) from e
        return BrokerTruth(positions=positions, open_orders=open_orders)

    async def _run(
        self,
        result: ReconcileResult,
        watch: Stopwatch,
        limit: int,
        dry_run: bool,
        close_reason: str,
    ) -> None:
        trades = self._ledger.trades.read_all()
        try:
            truth = await self.fetch_truth()
        except BrokerTruthError as e:
            logger.error(f"Broker truth unavailable, aborting reconciliation: {e}")
            result.fail(str(e), reason="broker_truth_failed")
            return

        now = self._get_now()
        result.positions_seen = len(truth.positions)
        result.open_orders_seen = len(truth.open_orders)

        changed: dict[str, Trade] = {}
        for trade in [t for t in trades if _is_tracked(t)][:limit]:
            if watch.expired():
                result.reason = "deadline"
                break
            before = trade.model_copy(deep=True)
            outcome = await self._reconcile_trade(trade, truth, now, close_reason, result)
            result.processed += 1
            if trade.changed_from(before):
                trade.last_reconciled_at = now
                trade.updated_at = now
                changed[trade.id] = trade
                if trade.status == TradeStatus.CLOSED:
                    result.closed += 1
                else:
                    result.synced += 1
                result.add_detail(trade_id=trade.id, ticker=trade.ticker, outcome=outcome, status=trade.status.value)
            elif outcome == "lookup_failed":
                result.add_detail(trade_id=trade.id, ticker=trade.ticker, outcome=outcome)

        tracked = {t.ticker.upper() for t in trades if _is_tracked(t)}
        for position in truth.positions:
            if position.symbol.upper() in tracked:
                continue
            synthesized = self.synthesize_trade(position, truth, now)
            changed[synthesized.id] = synthesized
            tracked.add(position.symbol.upper())
            result.backfilled += 1
            result.add_detail(
                trade_id=synthesized.id,
                ticker=synthesized.ticker,
                outcome="backfilled",
                status=synthesized.status.value,
            )
            logger.warning(
                f"Untracked broker position {position.symbol} ({position.side.value} {position.qty}) "
                f"backfilled as trade {synthesized.id} [{synthesized.status.value}]"
            )

        if changed and not dry_run:
            self._ledger.trades.save(changed.values())

    async def _reconcile_trade(
        self,
        trade: Trade,
        truth: BrokerTruth,
        now: datetime,
        close_reason: str,
        result: ReconcileResult,
    ) -> str:
        position = truth.position(trade.ticker)
        if position is not None:
            self.apply_position(trade, position, truth)
            return "position_open"

        known_ids = {i for i in (trade.broker_order_id, trade.stop_order_id, trade.take_profit_order_id) if i}
        exists_order_id = bool(known_ids & truth.open_order_ids)
        exists_order_sym = bool(truth.orders_for(trade.ticker))
        if exists_order_id:
            status = truth.status_of(trade.broker_order_id)
            if status and trade.broker_status != status:
                trade.broker_status = status
            return "order_open"
        if exists_order_sym:
            return "symbol_order_open"

        return await self._resolve_stale(trade, now, close_reason, result)

    def apply_position(self, trade: Trade, position: Position, truth: BrokerTruth) -> None:
        """Broker holds a position: it overrides local state unconditionally."""
        trade.status = TradeStatus.OPEN
        trade.closed_at = None
        trade.close_reason = None
        trade.error = None
        trade.invalid_reason = None
        trade.exit_price = None
        trade.realized_pnl = None
        trade.realized_r = None
        trade.broker_status = "position_open"

        avg_entry = float(position.avg_entry_price)
        qty = float(position.qty)
        if trade.entry_price is None:
            trade.entry_price = avg_entry
        if trade.avg_fill_price is None:
            trade.avg_fill_price = avg_entry
        if trade.quantity is None:
            trade.quantity = qty
        if trade.filled_qty is None:
            trade.filled_qty = qty

        if trade.stop_price is None:
            stop_leg = truth.find_stop(trade.ticker, trade.side)
            if stop_leg is not None:
                trade.stop_price = stop_leg.stop_price
                trade.stop_order_id = stop_leg.id

        if trade.stop_price is None:
            trade.status = TradeStatus.ERROR
            trade.error = "INVALID"
            trade.invalid_reason = MISSING_STOP

    def synthesize_trade(self, position: Position, truth: BrokerTruth, now: datetime) -> Trade:
        """Ledger record for a broker position nothing local accounts for."""
        trade = Trade(
            id=f"bf-{uuid.uuid4().hex[:12]}",
            ticker=position.symbol.upper(),
            side=position.side,
            created_at=now,
            updated_at=now,
            status=TradeStatus.OPEN,
            source="broker_backfill",
            opened_at=now,
            session_tag=session_tag(now).value,
            et_date=et_date(now),
            last_reconciled_at=now,
        )
        take_profit = truth.find_take_profit(trade.ticker, trade.side)
        if take_profit is not None:
            trade.target_price = take_profit.limit_price
            trade.take_profit_order_id = take_profit.id
        self.apply_position(trade, position, truth)
        return trade

    async def _resolve_stale(
        self, trade: Trade, now: datetime, close_reason: str, result: ReconcileResult
    ) -> str:
        """No position, no matching order, no order for the ticker: find out why."""
        if not trade.broker_order_id:
            return await self._resolve_without_order(trade, now, close_reason, result)

        try:
            order = await asyncio.to_thread(self._broker.get_order, trade.broker_order_id)
        except BrokerNotFoundError:
            return await self._resolve_not_found(trade, now, result)
        except BrokerError as e:
            result.degraded += 1
            logger.warning(f"Order lookup failed for trade {trade.id} ({trade.ticker}), leaving as is: {e}")
            return "lookup_failed"

        if order.status not in TERMINAL_ORDER_STATUSES:
            if order.status and trade.broker_status != order.status:
                trade.broker_status = order.status
            return "order_active"

        fill = fill_from_legs(order)
        children = leg_ids(order)
        if fill is None and (order.filled_qty or 0) > 0:
            try:
                activities = await asyncio.to_thread(
                    self._broker.list_fill_activities, [order.id, *children]
                )
            except BrokerError as e:
                result.degraded += 1
                logger.warning(f"Fill activity lookup failed for trade {trade.id}: {e}")
                return "lookup_failed"
            fill = fill_from_activities(trade, activities)

        if fill is not None:
            if order.filled_price and fill.entry_price is None:
                fill.entry_price = order.filled_price
            self._close(trade, now, fill.close_reason, fill=fill, broker_status=order.status)
            return "closed_with_fill"

        if not order.filled_qty:
            self._close(
                trade,
                now,
                f"broker_{order.status}_unfilled",
                broker_status=order.status,
                realized=(0.0, 0.0),
            )
            return "closed_unfilled"

        self._close(
            trade,
            now,
            f"{close_reason}: order_id={order.id}, leg_ids=[{', '.join(children)}], "
            f"order_status={order.status}, exit_fill=not_found",
            broker_status=order.status,
        )
        return "closed_no_exit_fill"

    async def _resolve_without_order(
        self, trade: Trade, now: datetime, close_reason: str, result: ReconcileResult
    ) -> str:
        """No parent order id (backfilled or manual): fall back to known leg ids."""
        legs = _known_leg_ids(trade)
        if legs:
            try:
                activities = await asyncio.to_thread(self._broker.list_fill_activities, legs)
            except BrokerError as e:
                result.degraded += 1
                logger.warning(f"Fill activity lookup failed for trade {trade.id}: {e}")
                return "lookup_failed"
            fill = fill_from_activities(trade, activities)
            if fill is not None:
                self._close(trade, now, fill.close_reason, fill=fill)
                return "closed_with_fill"

        self._close(
            trade,
            now,
            f"{close_reason}: order_id=None, leg_ids=[{', '.join(legs)}], http_status=None",
        )
        return "closed_no_order_id"

    async def _resolve_not_found(self, trade: Trade, now: datetime, result: ReconcileResult) -> str:
        """The broker says the order never existed or is gone for good."""
        legs = _known_leg_ids(trade)
        try:
            activities = await asyncio.to_thread(
                self._broker.list_fill_activities, [trade.broker_order_id, *legs]
            )
        except BrokerError as e:
            result.degraded += 1
            logger.warning(f"Fill activity lookup failed for trade {trade.id}: {e}")
            return "lookup_failed"

        fill = fill_from_activities(trade, activities)
        if fill is not None:
            self._close(trade, now, fill.close_reason, fill=fill, broker_status="not_found")
            return "closed_with_fill"

        self._close(
            trade,
            now,
            f"not_found_in_broker: order_id={trade.broker_order_id}, "
            f"leg_ids=[{', '.join(legs)}], http_status=404",
            broker_status="not_found",
        )
        return "closed_not_found"

    def _close(
        self,
        trade: Trade,
        now: datetime,
        reason: str,
        fill: ExitFill | None = None,
        broker_status: str | None = None,
        realized: tuple[float, float | None] | None = None,
    ) -> None:
        trade.status = TradeStatus.CLOSED
        trade.closed_at = now
        trade.close_reason = reason
        trade.error = None
        trade.invalid_reason = None
        if broker_status:
            trade.broker_status = broker_status
        if realized is not None:
            trade.realized_pnl, trade.realized_r = realized
        if fill is not None:
            apply_exit_fill(trade, fill)
        logger.info(f"Trade {trade.id} ({trade.ticker}) CLOSED: {reason} pnl={trade.realized_pnl}")

    async def finalize_closes(self, limit: int = 100, dry_run: bool = False) -> ReconcileResult:
        """Backfill realized P&L for CLOSED trades that were closed without a fill."""
        watch = Stopwatch(self._settings.reconcile_deadline_seconds)
        result = ReconcileResult(dry_run=dry_run)
        try:
            trades = self._ledger.trades.read_all()
        except LedgerError as e:
            result.duration_ms = watch.elapsed_ms()
            return result.fail(str(e), reason="ledger_failed")

        candidates = [
            t for t in trades
            if t.status == TradeStatus.CLOSED
            and t.realized_pnl is None
            and (t.broker_order_id or _known_leg_ids(t))
        ][:limit]
        changed: list[Trade] = []
        for trade in candidates:
            if watch.expired():
                result.reason = "deadline"
                break
            result.processed += 1
            ids = [i for i in (trade.broker_order_id, *_known_leg_ids(trade)) if i]
            fill = None
            if trade.broker_order_id:
                try:
                    order = await asyncio.to_thread(self._broker.get_order, trade.broker_order_id)
                    fill = fill_from_legs(order)
                    ids = [order.id, *leg_ids(order)]
                except BrokerNotFoundError:
                    pass
                except BrokerError as e:
                    result.degraded += 1
                    logger.warning(f"Finalize lookup failed for trade {trade.id}: {e}")
                    continue
            if fill is None:
                try:
                    fill = fill_from_activities(
                        trade, await asyncio.to_thread(self._broker.list_fill_activities, ids)
                    )
                except BrokerError as e:
                    result.degraded += 1
                    logger.warning(f"Finalize activity lookup failed for trade {trade.id}: {e}")
                    continue
            if fill is None:
                result.skipped += 1
                continue
            apply_exit_fill(trade, fill)
            trade.updated_at = self._get_now()
            changed.append(trade)
            result.synced += 1
            result.add_detail(trade_id=trade.id, ticker=trade.ticker, realized_pnl=trade.realized_pnl)

        if changed and not dry_run:
            try:
                self._ledger.trades.save(changed)
            except LedgerError as e:
                result.fail(str(e), reason="ledger_failed")
        result.duration_ms = watch.elapsed_ms()
        logger.info(f"Finalize closes: processed={result.processed} finalized={result.synced}")
        return result


def apply_exit_fill(trade: Trade, fill: ExitFill) -> None:
    """Record exit price and realized P&L/R from a fill."""
    entry = fill.entry_price or trade.avg_fill_price or trade.entry_price
    qty = fill.qty or trade.filled_qty or trade.quantity
    trade.exit_price = fill.exit_price
    if fill.entry_price is not None:
        trade.avg_fill_price = fill.entry_price
    if entry is None or not qty:
        return
    trade.realized_pnl, trade.realized_r = realized_pnl(
        trade.side, entry, fill.exit_price, qty, trade.stop_price
    )
