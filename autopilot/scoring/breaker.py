"""Process-wide circuit breaker for scoring model calls."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import redis
from loguru import logger

from autopilot.config.constants import ENGINE, ErrorKind
from autopilot.config.settings import Settings, get_settings
from autopilot.coordination.store import KeyedCounter


@dataclass
class CircuitBreakerState:
    """Current state of the circuit breaker."""

    is_triggered: bool = False
    trigger_reason: str | None = None
    resume_at: datetime | None = None
    errors_in_window: int = 0


class ScoringCircuitBreaker:
    """
    Circuit breaker that short-circuits model calls after an error burst.

    Monitors:
    - Rate-limit, timeout and other model errors within a rolling window
    - Opens for a cooldown once the count reaches the threshold

    State lives in Redis so every concurrent run sees the same breaker. Opening
    is INCR-then-compare followed by SET NX, so two runs crossing the
    threshold on the same burst open it once.
    """

    def __init__(self, client: redis.Redis, settings: Settings | None = None):
        self._client = client
        self._counter = KeyedCounter(client)
        self._settings = settings or get_settings()

    def record_error(self, kind: ErrorKind) -> bool:
        """Count one error. Returns True if this call opened the breaker."""
        count = self._counter.incr(ENGINE.BREAKER_ERRORS_KEY, self._settings.ai_breaker_window_seconds)
        if count < self._settings.ai_breaker_error_threshold:
            return False

        opened = bool(
            self._client.set(
                ENGINE.BREAKER_OPEN_KEY,
                f"{kind.value}:{count}",
                nx=True,
                ex=self._settings.ai_breaker_cooldown_seconds,
            )
        )
        if opened:
            logger.warning(
                f"SCORING BREAKER OPEN: {count} errors within "
                f"{self._settings.ai_breaker_window_seconds}s (last: {kind.value}). "
                f"Cooling down {self._settings.ai_breaker_cooldown_seconds}s"
            )
            self._counter.reset(ENGINE.BREAKER_ERRORS_KEY)
        return opened

    def is_open(self) -> bool:
        return bool(self._client.exists(ENGINE.BREAKER_OPEN_KEY))

    def get_state(self) -> CircuitBreakerState:
        """Get current circuit breaker state."""
        reason = self._client.get(ENGINE.BREAKER_OPEN_KEY)
        errors = self._counter.get(ENGINE.BREAKER_ERRORS_KEY)
        if not reason:
            return CircuitBreakerState(errors_in_window=errors)
        ttl = self._client.ttl(ENGINE.BREAKER_OPEN_KEY)
        resume_at = datetime.now(timezone.utc) + timedelta(seconds=ttl) if ttl and ttl > 0 else None
        return CircuitBreakerState(
            is_triggered=True,
            trigger_reason=reason,
            resume_at=resume_at,
            errors_in_window=errors,
        )

    def manual_reset(self) -> None:
        """Manually close the breaker and clear the error window."""
        self._client.delete(ENGINE.BREAKER_OPEN_KEY, ENGINE.BREAKER_ERRORS_KEY)
        logger.info("Scoring circuit breaker manually reset")
