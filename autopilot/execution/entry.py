"""Auto-entry decision engine.

Promotes AUTO_PENDING trades to OPEN by submitting bracket orders, one
canonical trade per ticker per run, under global admission gates and a
per-trade lock taken before any broker call.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import redis
from loguru import logger

from autopilot.config.constants import ENGINE, EntryDecision, ScoreOutcome, TradeStatus
from autopilot.config.settings import Settings, get_settings
from autopilot.coordination.store import Lease
from autopilot.exceptions import BrokerError, LedgerError, PricingError
from autopilot.execution.broker import AlpacaBroker
from autopilot.execution.eligibility import evaluate_eligibility, pick_canonical_by_ticker
from autopilot.execution.pricing import compute_bracket, resolve_decision_price
from autopilot.execution.sizer import PositionSizer
from autopilot.ledger.records import Signal, Trade
from autopilot.ledger.store import Ledger
from autopilot.monitoring.metrics import EntryResult, Stopwatch
from autopilot.risk.guardrails import EntryGuardrails, GateReport
from autopilot.risk.validator import TradeValidator
from autopilot.scoring.client import ScoringClient


class AutoEntryEngine:
    """
    Converts qualifying AUTO_PENDING trades into broker bracket orders.

    Never retries a failed submission within the run; the trade goes to ERROR
    with the broker's message and reconciliation picks up from there.
    """

    def __init__(
        self,
        ledger: Ledger,
        broker: AlpacaBroker,
        redis_client: redis.Redis,
        scoring_client: ScoringClient | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._ledger = ledger
        self._broker = broker
        self._lease = Lease(redis_client)
        self._guardrails = EntryGuardrails(redis_client, self._settings)
        self._scoring = scoring_client
        self._validator = TradeValidator()
        self._sizer = PositionSizer(self._settings)

    def _get_now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def run(
        self,
        limit: int | None = None,
        dry_run: bool = False,
        allow_carryover: bool | None = None,
    ) -> EntryResult:
        """
        Run one entry pass.

        Args:
            limit: Max canonical candidates to act on
            dry_run: Evaluate and price without locking, submitting or persisting
            allow_carryover: Accept trades created in an earlier session
        """
        watch = Stopwatch(3600)
        result = EntryResult(dry_run=dry_run)
        try:
            await self._run(result, limit, dry_run, allow_carryover)
        except LedgerError as e:
            logger.error(f"Auto-entry aborted: {e}")
            result.fail(str(e), reason="ledger_failed")
        except Exception as e:
            logger.exception(f"Auto-entry crashed: {e}")
            result.fail(f"internal_error: {e}")
        result.duration_ms = watch.elapsed_ms()
        logger.info(
            f"Auto-entry done: pending={result.pending_count} eligible={result.eligible_count} "
            f"executed={result.executed} errored={result.errored} skipped={result.skipped} "
            f"skips={result.skips_by_reason} dry_run={dry_run}"
        )
        return result

    async def _run(
        self,
        result: EntryResult,
        limit: int | None,
        dry_run: bool,
        allow_carryover: bool | None,
    ) -> None:
        trades = self._ledger.trades.read_all()
        now = self._get_now()

        open_trades = [t for t in trades if t.status == TradeStatus.OPEN]
        open_tickers = {t.ticker.upper() for t in open_trades}

        try:
            market_open = await asyncio.to_thread(self._broker.is_market_open)
        except BrokerError as e:
            logger.warning(f"Market clock unavailable, treating market as closed: {e}")
            market_open = False

        report = self._guardrails.evaluate(now, market_open, len(open_trades))
        result.gates = report.to_dict()
        result.market_open = market_open

        pending = [t for t in trades if t.status == TradeStatus.AUTO_PENDING]
        result.pending_count = len(pending)
        canonical, duplicates = pick_canonical_by_ticker(pending)
        for trade in duplicates:
            self._act(result, trade, EntryDecision.SKIP, "duplicate_ticker")

        blocking = report.blocking_reason(dry_run=dry_run)
        if blocking:
            for trade in canonical:
                self._act(result, trade, EntryDecision.SKIP, blocking)
            result.reason = blocking
            return

        if limit:
            for trade in canonical[limit:]:
                self._act(result, trade, EntryDecision.SKIP, "run_limit")
            canonical = canonical[:limit]

        entries_left = report.remaining_entries
        positions_left = report.remaining_positions
        for trade in canonical:
            if entries_left <= 0 or positions_left <= 0:
                reason = "max_entries_per_day" if entries_left <= 0 else "max_open_positions"
                self._act(result, trade, EntryDecision.SKIP, reason)
                continue
            if trade.ticker.upper() in open_tickers:
                self._act(result, trade, EntryDecision.SKIP, "position_already_open")
                continue

            decision = await self._process(result, trade, now, report, dry_run, allow_carryover)
            if decision in (EntryDecision.EXECUTED, EntryDecision.WOULD_EXECUTE):
                entries_left -= 1
                positions_left -= 1
                open_tickers.add(trade.ticker.upper())

    def _act(self, result: EntryResult, trade: Trade, decision: EntryDecision, reason: str | None = None, **extra: Any) -> EntryDecision:
        """Record one candidate decision."""
        result.processed += 1
        if decision == EntryDecision.SKIP:
            result.record_skip(reason or "unknown")
        elif decision == EntryDecision.FAILED:
            result.errored += 1
        elif decision == EntryDecision.EXECUTED:
            result.executed += 1
        if len(result.actions) < ENGINE.DETAILS_CAP:
            result.actions.append(
                {"trade_id": trade.id, "ticker": trade.ticker, "decision": decision.value, "reason": reason, **extra}
            )
        return decision

    async def _process(
        self,
        result: EntryResult,
        trade: Trade,
        now: datetime,
        report: GateReport,
        dry_run: bool,
        allow_carryover: bool | None,
    ) -> EntryDecision:
        verdict = evaluate_eligibility(trade, now, allow_carryover, self._settings)
        if not verdict.eligible:
            return self._act(result, trade, EntryDecision.SKIP, verdict.reason)

        validation = self._validator.validate_trade(trade)
        if not validation.is_valid:
            if not dry_run:
                self._mark_error(trade, f"invalid_trade: {validation.reason}", now)
            return self._act(result, trade, EntryDecision.SKIP, "invalid_trade", detail=validation.reason)

        if verdict.needs_rescore:
            if dry_run:
                result.eligible_count += 1
                return self._act(result, trade, EntryDecision.WOULD_EXECUTE, "rescore_required")
            if not await self._rescore(trade, now):
                return self._act(result, trade, EntryDecision.SKIP, "rescore_failed")

        result.eligible_count += 1

        if dry_run:
            try:
                plan = await self._plan(trade)
            except PricingError as e:
                return self._act(result, trade, EntryDecision.SKIP, "pricing_failed", detail=str(e))
            reason = None if report.market_open else "market_closed"
            return self._act(result, trade, EntryDecision.WOULD_EXECUTE, reason, **plan["summary"])

        lock_key = ENGINE.ENTRY_LOCK_KEY.format(trade_id=trade.id)
        token = self._lease.acquire(lock_key, self._settings.auto_entry_lock_ttl_seconds)
        if token is None:
            logger.info(f"Trade {trade.id} ({trade.ticker}) is locked by another run")
            return self._act(result, trade, EntryDecision.SKIP, "already_locked")

        try:
            existing = await asyncio.to_thread(self._broker.list_open_orders, trade.ticker)
        except BrokerError as e:
            self._lease.release(lock_key, token)
            return self._act(result, trade, EntryDecision.SKIP, "broker_unavailable", detail=str(e))
        if existing:
            self._lease.release(lock_key, token)
            return self._act(result, trade, EntryDecision.SKIP, "open_order_exists", order_id=existing[0].id)

        try:
            plan = await self._plan(trade)
        except PricingError as e:
            self._lease.release(lock_key, token)
            self._mark_error(trade, f"pricing_failed: {e}", now)
            return self._act(result, trade, EntryDecision.FAILED, "pricing_failed", detail=str(e))

        try:
            denied = self._reserve_slots(now)
        except Exception:
            self._lease.release(lock_key, token)
            raise
        if denied:
            self._lease.release(lock_key, token)
            return self._act(result, trade, EntryDecision.SKIP, denied)

        # Lock is held to TTL from here on: an order may exist at the broker
        submitted = False
        try:
            decision = await self._submit(result, trade, plan, now)
            submitted = decision == EntryDecision.EXECUTED
            return decision
        finally:
            if not submitted:
                self._guardrails.release_entry(now)
            self._guardrails.release_position()

    def _reserve_slots(self, now: datetime) -> str | None:
        """Reserve a daily entry and an open-position slot, or name the full cap."""
        if not self._guardrails.reserve_entry(now):
            return "max_entries_per_day"
        try:
            admitted = self._guardrails.reserve_position(self._count_open)
        except Exception:
            self._guardrails.release_entry(now)
            raise
        if not admitted:
            self._guardrails.release_entry(now)
            return "max_open_positions"
        return None

    def _count_open(self) -> int:
        return sum(1 for t in self._ledger.trades.read_all() if t.status == TradeStatus.OPEN)

    async def _plan(self, trade: Trade) -> dict[str, Any]:
        """Decision price, bracket and size for a trade."""
        try:
            quote = await asyncio.to_thread(self._broker.get_quote, trade.ticker)
        except BrokerError as e:
            logger.warning(f"Quote unavailable for {trade.ticker}, using seed price: {e}")
            quote = None
        decision = resolve_decision_price(quote, trade.entry_price)
        stop_distance = abs(Decimal(str(trade.entry_price)) - Decimal(str(trade.stop_price)))
        bracket = compute_bracket(trade.side, decision.price, stop_distance, self._settings.auto_entry_reward_risk)
        size = self._sizer.calculate_tier_based(trade.ai.score, bracket.entry, bracket.stop)
        if not size.is_valid:
            raise PricingError(size.rejection_reason or "invalid_size")
        return {
            "decision": decision,
            "bracket": bracket,
            "size": size,
            "summary": {
                "price_source": decision.source,
                "entry": str(bracket.entry),
                "stop": str(bracket.stop),
                "take_profit": str(bracket.take_profit),
                "qty": size.shares,
                "tier": size.tier.value,
            },
        }

    async def _submit(self, result: EntryResult, trade: Trade, plan: dict[str, Any], now: datetime) -> EntryDecision:
        bracket, size = plan["bracket"], plan["size"]
        order = await asyncio.to_thread(
            self._broker.submit_bracket_order,
            trade.ticker,
            trade.side,
            size.shares,
            bracket.take_profit,
            bracket.stop,
            f"auto-{trade.id}",
        )

        trade.entry_price = float(bracket.entry)
        trade.stop_price = float(bracket.stop)
        trade.target_price = float(bracket.take_profit)
        trade.quantity = float(size.shares)
        trade.risk_dollars = float(size.risk_amount)
        trade.ai.tier = size.tier.value
        trade.ai.risk_mult = size.risk_mult
        trade.updated_at = now

        if order.success and order.order_id:
            trade.status = TradeStatus.OPEN
            trade.broker_order_id = order.order_id
            trade.stop_order_id = order.stop_order_id
            trade.take_profit_order_id = order.take_profit_order_id
            trade.broker_status = order.status
            trade.opened_at = now
            trade.error = None
            self._guardrails.record_success(now)
            self._persist(trade)
            logger.info(
                f"Trade {trade.id} OPEN: {trade.side.value} {size.shares} {trade.ticker} "
                f"entry~{bracket.entry} SL={bracket.stop} TP={bracket.take_profit} order={order.order_id}"
            )
            return self._act(result, trade, EntryDecision.EXECUTED, None, order_id=order.order_id, **plan["summary"])

        trade.status = TradeStatus.ERROR
        trade.error = f"broker_rejected: {order.message}"
        trade.broker_status = order.status
        self._guardrails.record_failure(now)
        self._persist(trade)
        logger.warning(f"Trade {trade.id} ({trade.ticker}) submission failed: {order.message}")
        return self._act(result, trade, EntryDecision.FAILED, "broker_rejected", detail=order.message)

    async def _rescore(self, trade: Trade, now: datetime) -> bool:
        """Fresh score for a trade whose score aged past the rescore threshold."""
        if self._scoring is None:
            return False
        candidate = Signal(
            id=trade.signal_id or trade.id,
            ticker=trade.ticker,
            side=trade.side,
            entry_price=trade.entry_price,
            stop_price=trade.stop_price,
            target_price=trade.target_price,
            source=trade.source,
            created_at=trade.created_at,
        )
        scored = await self._scoring.score(candidate)
        if scored.outcome != ScoreOutcome.SUCCESS or not scored.qualification.qualified:
            logger.info(f"Rescore rejected {trade.ticker}: {scored.outcome.value} {scored.message or ''}")
            return False
        trade.ai.score = round(scored.qualification.score, 2)
        trade.ai.grade = scored.qualification.grade
        trade.scored_at = now
        return True

    def _mark_error(self, trade: Trade, error: str, now: datetime) -> None:
        trade.status = TradeStatus.ERROR
        trade.error = error
        trade.updated_at = now
        self._persist(trade)

    def _persist(self, trade: Trade) -> None:
        try:
            self._ledger.trades.save([trade])
        except LedgerError as e:
            # The per-trade lock still blocks resubmission until its TTL
            logger.error(f"Failed to persist trade {trade.id} after broker call: {e}")
