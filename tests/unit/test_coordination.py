"""Unit tests for the Redis lease, keyed counters and the scoring breaker."""

from autopilot.config.constants import ENGINE, ErrorKind
from autopilot.config.settings import Settings
from autopilot.coordination.store import KeyedCounter, Lease
from autopilot.scoring.breaker import ScoringCircuitBreaker


class TestLease:
    """Tests for the token lease."""

    def test_acquire_is_exclusive(self, redis_client):
        lease = Lease(redis_client)
        token = lease.acquire("lock:a", 30)
        assert token
        assert lease.acquire("lock:a", 30) is None
        assert lease.is_held("lock:a")

    def test_release_requires_matching_token(self, redis_client):
        lease = Lease(redis_client)
        token = lease.acquire("lock:a", 30)
        assert lease.release("lock:a", "someone-else") is False
        assert lease.is_held("lock:a")
        assert lease.release("lock:a", token) is True
        assert not lease.is_held("lock:a")

    def test_release_is_idempotent(self, redis_client):
        lease = Lease(redis_client)
        token = lease.acquire("lock:a", 30)
        lease.release("lock:a", token)
        assert lease.release("lock:a", token) is False

    def test_lease_expires(self, redis_client):
        lease = Lease(redis_client)
        lease.acquire("lock:a", 30)
        assert 0 < redis_client.ttl("lock:a") <= 30


class TestKeyedCounter:
    """Tests for expiring counters."""

    def test_incr_sets_ttl_once(self, redis_client):
        counter = KeyedCounter(redis_client)
        assert counter.incr("count:x", 100) == 1
        redis_client.expire("count:x", 50)
        assert counter.incr("count:x", 100) == 2
        # The first increment's expiry is kept
        assert redis_client.ttl("count:x") <= 50

    def test_get_and_reset(self, redis_client):
        counter = KeyedCounter(redis_client)
        assert counter.get("count:x") == 0
        counter.incr("count:x", 100)
        counter.reset("count:x")
        assert counter.get("count:x") == 0


class TestScoringCircuitBreaker:
    """Tests for the process-wide scoring breaker."""

    def _breaker(self, redis_client, threshold=3):
        settings = Settings(ai_breaker_error_threshold=threshold, ai_breaker_cooldown_seconds=60)
        return ScoringCircuitBreaker(redis_client, settings)

    def test_initially_closed(self, redis_client):
        breaker = self._breaker(redis_client)
        state = breaker.get_state()
        assert state.is_triggered is False
        assert state.errors_in_window == 0

    def test_opens_at_threshold(self, redis_client):
        breaker = self._breaker(redis_client)
        assert breaker.record_error(ErrorKind.TIMEOUT) is False
        assert breaker.record_error(ErrorKind.TIMEOUT) is False
        assert breaker.record_error(ErrorKind.RATE_LIMIT) is True
        assert breaker.is_open()

        state = breaker.get_state()
        assert state.is_triggered
        assert state.trigger_reason.startswith("rate_limit")
        assert state.resume_at is not None
        # Window restarts once the breaker opens
        assert state.errors_in_window == 0

    def test_shared_across_instances(self, redis_client):
        """Breaker state lives in Redis, not in the instance."""
        first = self._breaker(redis_client, threshold=1)
        first.record_error(ErrorKind.OTHER)
        assert self._breaker(redis_client).is_open()

    def test_manual_reset(self, redis_client):
        breaker = self._breaker(redis_client, threshold=1)
        breaker.record_error(ErrorKind.TIMEOUT)
        breaker.manual_reset()
        assert not breaker.is_open()
        assert redis_client.get(ENGINE.BREAKER_ERRORS_KEY) is None
