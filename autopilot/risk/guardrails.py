"""Global admission gates for automatic entries.

Counters that several independent runs must agree on (entries today,
consecutive submission failures) live in Redis as keyed counters with
expiry rather than in process memory.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import redis
from loguru import logger

from autopilot.config.constants import ENGINE
from autopilot.config.settings import Settings, get_settings
from autopilot.coordination.store import KeyedCounter
from autopilot.risk.sessions import et_date


@dataclass
class GateReport:
    """Evaluated gates, kept for reporting even when later steps re-check."""

    trading_enabled: bool = True
    live_permitted: bool = True
    market_open: bool = False
    entries_today: int = 0
    max_entries_per_day: int = 0
    open_positions: int = 0
    max_open_positions: int = 0
    auto_disabled_reason: str | None = None
    consecutive_failures: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def remaining_entries(self) -> int:
        return max(0, self.max_entries_per_day - self.entries_today)

    @property
    def remaining_positions(self) -> int:
        return max(0, self.max_open_positions - self.open_positions)

    def blocking_reason(self, dry_run: bool = False) -> str | None:
        """First gate that stops all entries, in evaluation order.

        Market closure does not block a dry run; it is reported instead.
        """
        if not self.trading_enabled:
            return "auto_entry_disabled"
        if self.auto_disabled_reason:
            return "auto_disabled_failures"
        if not self.live_permitted:
            return "live_not_permitted"
        if not self.market_open and not dry_run:
            return "market_closed"
        if self.remaining_entries <= 0:
            return "max_entries_per_day"
        if self.remaining_positions <= 0:
            return "max_open_positions"
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trading_enabled": self.trading_enabled,
            "live_permitted": self.live_permitted,
            "market_open": self.market_open,
            "entries_today": self.entries_today,
            "max_entries_per_day": self.max_entries_per_day,
            "open_positions": self.open_positions,
            "max_open_positions": self.max_open_positions,
            "auto_disabled_reason": self.auto_disabled_reason,
            "consecutive_failures": self.consecutive_failures,
            "warnings": list(self.warnings),
        }


class EntryGuardrails:
    """
    Admission control for the entry engine.

    Monitors:
    - Enabled flag (settings, with an operator override in Redis)
    - Paper/live permission
    - Entries per ET day
    - Open positions
    - Consecutive submission failures (auto-disable for the rest of the day)
    """

    def __init__(self, client: redis.Redis, settings: Settings | None = None):
        self._client = client
        self._counter = KeyedCounter(client)
        self._settings = settings or get_settings()

    def _count_key(self, now: datetime) -> str:
        return ENGINE.ENTRY_COUNT_KEY.format(et_date=et_date(now))

    def _failures_key(self, now: datetime) -> str:
        return ENGINE.ENTRY_FAILURES_KEY.format(et_date=et_date(now))

    def is_enabled(self) -> bool:
        override = self._client.get(ENGINE.ENTRY_DISABLED_KEY)
        if override == "manual":
            return False
        if override == "enabled":
            return True
        return self._settings.auto_entry_enabled

    def set_enabled(self, enabled: bool) -> None:
        """Operator override of the enabled flag."""
        self._client.set(ENGINE.ENTRY_DISABLED_KEY, "enabled" if enabled else "manual")
        logger.warning(f"Auto-entry {'enabled' if enabled else 'disabled'} by operator")

    def evaluate(self, now: datetime, market_open: bool, open_positions: int) -> GateReport:
        failures = self._counter.get(self._failures_key(now))
        max_failures = self._settings.auto_entry_max_consecutive_failures
        report = GateReport(
            trading_enabled=self.is_enabled(),
            live_permitted=not (self._settings.auto_entry_paper_only and not self._settings.is_paper_trading),
            market_open=market_open,
            entries_today=self._counter.get(self._count_key(now)),
            max_entries_per_day=self._settings.auto_entry_max_entries_per_day,
            open_positions=open_positions,
            max_open_positions=self._settings.auto_entry_max_open_positions,
            consecutive_failures=failures,
        )
        if failures >= max_failures:
            report.auto_disabled_reason = f"{failures} consecutive submission failures"
        elif failures:
            report.warnings.append(f"{failures}/{max_failures} consecutive submission failures")
        return report

    def reserve_entry(self, now: datetime) -> bool:
        """Take one of today's entry slots before a broker call."""
        return self._counter.reserve(
            self._count_key(now),
            ENGINE.DAILY_COUNTER_TTL_SECONDS,
            self._settings.auto_entry_max_entries_per_day,
        )

    def release_entry(self, now: datetime) -> None:
        """Return an entry slot whose submission did not go through."""
        self._counter.decr(self._count_key(now), ENGINE.DAILY_COUNTER_TTL_SECONDS)

    def reserve_position(self, count_open: Callable[[], int]) -> bool:
        """
        Take a position slot for an order about to be submitted.

        In-flight submissions are counted in Redis until their trade is
        persisted as OPEN. count_open is read after the increment, so a
        submission that finished in the meantime is seen in the ledger.

        Args:
            count_open: Returns the number of OPEN trades in the ledger
        """
        key = ENGINE.ENTRY_INFLIGHT_KEY
        ttl = self._settings.auto_entry_lock_ttl_seconds
        inflight = self._counter.incr(key, ttl)
        try:
            admitted = count_open() + inflight <= self._settings.auto_entry_max_open_positions
        except Exception:
            self._counter.decr(key, ttl)
            raise
        if not admitted:
            self._counter.decr(key, ttl)
        return admitted

    def release_position(self) -> None:
        """Drop an in-flight position once its outcome is in the ledger."""
        self._counter.decr(ENGINE.ENTRY_INFLIGHT_KEY, self._settings.auto_entry_lock_ttl_seconds)

    def record_success(self, now: datetime) -> None:
        """A submission went through: reset the failure streak."""
        self._counter.reset(self._failures_key(now))

    def record_failure(self, now: datetime) -> bool:
        """Count a submission failure. Returns True once auto-entry disables."""
        failures = self._counter.incr(self._failures_key(now), ENGINE.DAILY_COUNTER_TTL_SECONDS)
        if failures >= self._settings.auto_entry_max_consecutive_failures:
            logger.warning(f"AUTO-ENTRY DISABLED for today after {failures} consecutive failures")
            return True
        return False

    def reset_failures(self, now: datetime) -> None:
        """Clear the failure streak, lifting a failure auto-disable."""
        self._counter.reset(self._failures_key(now))
        logger.info("Auto-entry failure streak reset")
