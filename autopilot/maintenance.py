"""Operator maintenance operations on the ledger and broker."""

from datetime import datetime, timedelta, timezone

from loguru import logger

from autopilot.config.constants import SignalStatus
from autopilot.exceptions import LedgerError
from autopilot.execution.broker import AlpacaBroker
from autopilot.ledger.guard import guard_signals
from autopilot.ledger.store import Ledger
from autopilot.monitoring.metrics import RunResult, Stopwatch
from autopilot.risk.guardrails import EntryGuardrails

ARCHIVABLE = {SignalStatus.SCORED, SignalStatus.ERROR}


class Maintenance:
    """Housekeeping that sits outside the three engines."""

    def __init__(self, ledger: Ledger, broker: AlpacaBroker, guardrails: EntryGuardrails):
        self._ledger = ledger
        self._broker = broker
        self._guardrails = guardrails

    def archive_signals(self, older_than_days: int = 3, dry_run: bool = False) -> RunResult:
        """Move finished signals older than the cutoff to ARCHIVED."""
        watch = Stopwatch(60)
        result = RunResult(dry_run=dry_run)
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=older_than_days)
        try:
            signals = self._ledger.signals.read_all()
            archived = []
            for signal in signals:
                if signal.status not in ARCHIVABLE or signal.created_at > cutoff:
                    continue
                signal.status = SignalStatus.ARCHIVED
                signal.archived_at = now
                signal.updated_at = now
                signal.clear_claim()
                archived.append(signal)
                result.add_detail(signal_id=signal.id, ticker=signal.ticker)
            result.processed = len(archived)
            if archived and not dry_run:
                self._ledger.signals.save(archived)
        except LedgerError as e:
            result.fail(str(e), reason="ledger_failed")
        result.duration_ms = watch.elapsed_ms()
        logger.info(f"Archived {result.processed} signals older than {older_than_days}d (dry_run={dry_run})")
        return result

    def repair_signals(self, dry_run: bool = False) -> RunResult:
        """Run the write guard across every stored signal."""
        watch = Stopwatch(60)
        result = RunResult(dry_run=dry_run)
        try:
            signals = self._ledger.signals.read_all()
            repaired = set(guard_signals(signals))
            result.processed = len(repaired)
            for signal in signals:
                if signal.id in repaired:
                    result.add_detail(signal_id=signal.id, ticker=signal.ticker, error=signal.error)
            if repaired and not dry_run:
                self._ledger.signals.save(s for s in signals if s.id in repaired)
        except LedgerError as e:
            result.fail(str(e), reason="ledger_failed")
        result.duration_ms = watch.elapsed_ms()
        logger.info(f"Repaired {result.processed} signals (dry_run={dry_run})")
        return result

    def reset_entry_failures(self) -> RunResult:
        """Clear the consecutive-failure streak and with it the auto-disable."""
        self._guardrails.reset_failures(datetime.now(timezone.utc))
        return RunResult(reason="failures_reset")

    def cancel_order(self, order_id: str) -> RunResult:
        result = RunResult(processed=1)
        if self._broker.cancel_order(order_id):
            result.reason = "canceled"
        else:
            result.errored = 1
            result.reason = "cancel_failed"
        result.add_detail(order_id=order_id)
        return result
