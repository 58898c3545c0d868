"""AI scoring drain.

One invocation:
1. reclaims SCORING signals whose claim went stale (crash recovery),
2. claims a bounded batch of PENDING signals by writing them as SCORING,
3. scores them on a fixed-width worker pool, racing each call against the
   run deadline,
4. persists terminal results and releases unfinalized claims up to a limit.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import redis
from loguru import logger

from autopilot.config.constants import ENGINE, DrainStrategy, ScoreOutcome, SignalStatus
from autopilot.config.settings import Settings, get_settings
from autopilot.coordination.store import Lease
from autopilot.exceptions import LedgerError
from autopilot.ledger.records import Signal
from autopilot.ledger.store import Ledger
from autopilot.monitoring.metrics import DrainResult, Stopwatch
from autopilot.scoring.apply import apply_score_error, apply_score_success, release_claim
from autopilot.scoring.client import ScoreResult, ScoringClient


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ScoringDrain:
    """
    Bounded concurrent scorer for queued signals.

    Contract: each claimed signal is scored at most once per run. A call that
    outlives the deadline comes back as TIMEOUT and its signal stays in
    SCORING until released or reclaimed, never ERROR.
    """

    def __init__(
        self,
        ledger: Ledger,
        scoring_client: ScoringClient,
        redis_client: redis.Redis,
        settings: Settings | None = None,
    ):
        self._ledger = ledger
        self._client = scoring_client
        self._lease = Lease(redis_client)
        self._settings = settings or get_settings()

    def _get_now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def run(
        self,
        limit: int | None = None,
        deadline_ms: int | None = None,
        strategy: DrainStrategy = DrainStrategy.RECENT_FIRST,
        release_limit: int = 0,
        dry_run: bool = False,
    ) -> DrainResult:
        """
        Run one drain pass.

        Args:
            limit: Max signals to claim (defaults to settings)
            deadline_ms: Wall-clock budget for the run
            strategy: recent_first or backlog_oldest_first
            release_limit: Unfinalized claims to release back to PENDING
                (-1 all, 0 none, N at most N)
            dry_run: Report the batch without claiming or scoring
        """
        budget = deadline_ms / 1000 if deadline_ms else self._settings.drain_deadline_seconds
        watch = Stopwatch(budget)
        result = DrainResult(dry_run=dry_run, picked_strategy=strategy.value)
        limit = max(1, min(limit or self._settings.drain_max_per_run, 500))

        token = None
        if not dry_run:
            try:
                token = self._lease.acquire(ENGINE.DRAIN_LOCK_KEY, budget + self._settings.drain_soft_stop_seconds)
            except redis.RedisError as e:
                logger.error(f"Scoring drain could not take its run lock: {e}")
                result.fail(f"coordination_failed: {e}", reason="coordination_failed")
                result.duration_ms = watch.elapsed_ms()
                return result
            if token is None:
                result.reason = "already_running"
                result.duration_ms = watch.elapsed_ms()
                logger.info("Scoring drain already running, skipping")
                return result

        try:
            await self._run(result, watch, limit, strategy, release_limit, dry_run)
        except LedgerError as e:
            logger.error(f"Scoring drain aborted: {e}")
            result.fail(str(e), reason="ledger_failed")
        except Exception as e:
            logger.exception(f"Scoring drain crashed: {e}")
            result.fail(f"internal_error: {e}")
        finally:
            if token:
                try:
                    self._lease.release(ENGINE.DRAIN_LOCK_KEY, token)
                except redis.RedisError as e:
                    logger.warning(f"Scoring drain lock left to expire: {e}")

        result.duration_ms = watch.elapsed_ms()
        result.remaining_ms = max(0, int(watch.remaining() * 1000))
        logger.info(
            f"Scoring drain done: processed={result.processed} scored={result.scored} "
            f"errored={result.errored} timeout={result.timeout_count} skipped={result.skipped} "
            f"released={result.released_count} reclaimed={result.reclaimed_count} "
            f"in {result.duration_ms}ms"
        )
        return result

    async def _run(
        self,
        result: DrainResult,
        watch: Stopwatch,
        limit: int,
        strategy: DrainStrategy,
        release_limit: int,
        dry_run: bool,
    ) -> None:
        signals = self._ledger.signals.read_all()
        now = self._get_now()

        reclaimed = self.reclaim_stale(signals, now)
        result.reclaimed_count = len(reclaimed)
        if reclaimed and not dry_run:
            self._ledger.signals.save(reclaimed)

        batch = self.select_batch(signals, limit, strategy, now)
        if batch:
            result.newest_picked_created_at = _iso(max(s.created_at for s in batch))
            result.oldest_picked_created_at = _iso(min(s.created_at for s in batch))

        if dry_run:
            for s in batch:
                result.add_detail(id=s.id, ticker=s.ticker, created_at=_iso(s.created_at))
            return
        if not batch:
            result.reason = "nothing_to_do"
            return

        self.claim(batch, now)
        self._ledger.signals.save(batch)
        logger.info(f"Claimed {len(batch)} signals for scoring ({strategy.value})")

        timed_out: list[Signal] = []
        queue = list(batch)
        width = self._settings.drain_concurrency
        while queue:
            if watch.remaining() < self._settings.drain_soft_stop_seconds:
                result.reason = "deadline_soft_stop"
                result.expired = True
                break
            wave, queue = queue[:width], queue[width:]
            result.attempted_count += len(wave)
            outcomes = await asyncio.gather(*(self._score_one(s, watch) for s in wave))

            finished: list[Signal] = []
            finished_at = self._get_now()
            for signal, outcome in zip(wave, outcomes):
                if self._apply(signal, outcome, finished_at, result):
                    finished.append(signal)
                else:
                    timed_out.append(signal)
            self._ledger.signals.save(finished)

        # Claimed but never admitted, then timed out; released in that order
        unfinalized = queue + timed_out
        to_release = self._release_slice(unfinalized, release_limit, len(batch))
        if to_release:
            released_at = self._get_now()
            for signal in to_release:
                release_claim(signal, released_at)
            self._ledger.signals.save(to_release)
        result.released_count = len(to_release)

    def reclaim_stale(self, signals: list[Signal], now: datetime) -> list[Signal]:
        """Revert SCORING signals whose claim is older than the stale threshold.

        Staleness comes from the signal's own claim timestamp, not the
        coordination store, since the two can disagree after a crash.
        """
        cutoff = now - timedelta(minutes=self._settings.drain_stale_scoring_minutes)
        reclaimed = []
        for signal in signals:
            if len(reclaimed) >= self._settings.drain_reclaim_max:
                break
            if signal.status != SignalStatus.SCORING:
                continue
            started = signal.scoring_started_at or signal.created_at
            if started <= cutoff:
                release_claim(signal, now)
                reclaimed.append(signal)
        if reclaimed:
            logger.warning(f"Reclaimed {len(reclaimed)} stale SCORING signals")
        return reclaimed

    def select_batch(
        self, signals: list[Signal], limit: int, strategy: DrainStrategy, now: datetime
    ) -> list[Signal]:
        """Pick PENDING signals in the requested order."""
        pending = [s for s in signals if s.status == SignalStatus.PENDING]
        if strategy == DrainStrategy.BACKLOG_OLDEST_FIRST:
            return sorted(pending, key=lambda s: s.created_at)[:limit]

        newest_first = sorted(pending, key=lambda s: s.created_at, reverse=True)
        window_start = now - timedelta(hours=self._settings.drain_recent_window_hours)
        recent = [s for s in newest_first if s.created_at >= window_start]
        return (recent or newest_first)[:limit]

    def claim(self, batch: list[Signal], now: datetime) -> None:
        lock_until = now + timedelta(seconds=self._settings.drain_claim_ttl_seconds)
        for signal in batch:
            signal.status = SignalStatus.SCORING
            signal.scoring_started_at = now
            signal.scoring_lock_until = lock_until
            signal.scoring_attempts += 1
            signal.updated_at = now

    async def _score_one(self, signal: Signal, watch: Stopwatch) -> ScoreResult:
        """Race one scoring call against what is left of the run."""
        budget = watch.remaining() - self._settings.drain_call_buffer_seconds
        if budget <= 0:
            return ScoreResult(outcome=ScoreOutcome.TIMEOUT, message="deadline")
        try:
            return await asyncio.wait_for(self._client.score(signal, timeout=budget), timeout=budget)
        except asyncio.TimeoutError:
            return ScoreResult(outcome=ScoreOutcome.TIMEOUT, message="deadline")
        except Exception as e:
            logger.warning(f"Scoring {signal.id} ({signal.ticker}) raised: {e}")
            return ScoreResult.failed(None, f"scoring_failed: {e}")

    def _apply(self, signal: Signal, outcome: ScoreResult, now: datetime, result: DrainResult) -> bool:
        """Apply an outcome. Returns False when the signal stays claimed."""
        result.processed += 1
        detail = {"id": signal.id, "ticker": signal.ticker, "outcome": outcome.outcome.value}

        if outcome.outcome == ScoreOutcome.TIMEOUT:
            result.timeout_count += 1
            result.add_detail(**detail)
            return False

        result.completed_count += 1
        if outcome.outcome == ScoreOutcome.SKIPPED:
            release_claim(signal, now)
            result.skipped += 1
            detail["reason"] = outcome.message
        elif outcome.outcome == ScoreOutcome.SUCCESS:
            apply_score_success(signal, outcome, now)
            if signal.status == SignalStatus.SCORED:
                result.scored += 1
                detail.update(score=signal.ai_score, qualified=signal.qualified)
            else:
                result.errored += 1
                detail["error"] = signal.error
        else:
            apply_score_error(signal, outcome, now)
            result.errored += 1
            detail["error"] = signal.error
        result.add_detail(**detail)
        return True

    @staticmethod
    def _release_slice(unfinalized: list[Signal], release_limit: int, batch_size: int) -> list[Signal]:
        if release_limit == 0 or not unfinalized:
            return []
        cap = batch_size if release_limit < 0 else min(release_limit, batch_size)
        return unfinalized[:cap]
