"""Per-run result counters returned by every engine invocation.

These are observability only. Nothing reads them back to make decisions.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from autopilot.config.constants import ENGINE


@dataclass
class RunResult:
    """Base result shared by all engines."""

    ok: bool = True
    reason: str | None = None
    error: str | None = None
    dry_run: bool = False
    processed: int = 0
    errored: int = 0
    skipped: int = 0
    duration_ms: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def add_detail(self, **detail: Any) -> None:
        """Append a diagnostic entry, dropping anything past the cap."""
        if len(self.details) < ENGINE.DETAILS_CAP:
            self.details.append(detail)

    def fail(self, error: str, reason: str | None = None) -> "RunResult":
        self.ok = False
        self.error = error
        if reason:
            self.reason = reason
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DrainResult(RunResult):
    """Counters for one scoring drain run."""

    scored: int = 0
    timeout_count: int = 0
    expired: bool = False
    remaining_ms: int = 0
    released_count: int = 0
    reclaimed_count: int = 0
    attempted_count: int = 0
    completed_count: int = 0
    picked_strategy: str | None = None
    newest_picked_created_at: str | None = None
    oldest_picked_created_at: str | None = None


@dataclass
class EntryResult(RunResult):
    """Counters and per-candidate actions for one auto-entry run."""

    executed: int = 0
    pending_count: int = 0
    eligible_count: int = 0
    market_open: bool | None = None
    gates: dict[str, Any] = field(default_factory=dict)
    skips_by_reason: dict[str, int] = field(default_factory=dict)
    actions: list[dict[str, Any]] = field(default_factory=list)

    def record_skip(self, reason: str) -> None:
        self.skipped += 1
        self.skips_by_reason[reason] = self.skips_by_reason.get(reason, 0) + 1


@dataclass
class ReconcileResult(RunResult):
    """Counters for one reconciliation pass."""

    closed: int = 0
    synced: int = 0
    backfilled: int = 0
    degraded: int = 0
    positions_seen: int = 0
    open_orders_seen: int = 0


class Stopwatch:
    """Monotonic run timer with a fixed deadline."""

    def __init__(self, budget_seconds: float):
        self._start = time.monotonic()
        self._deadline = self._start + budget_seconds

    def remaining(self) -> float:
        """Seconds left until the deadline (negative once past it)."""
        return self._deadline - time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def expired(self) -> bool:
        return self.remaining() <= 0
