"""Transitions applied to a claimed signal once its score call finishes."""

import math
from datetime import datetime

from autopilot.config.constants import Direction, ScoreFailure, SignalStatus
from autopilot.ledger.records import Signal
from autopilot.scoring.client import ScoreResult


def apply_score_success(signal: Signal, result: ScoreResult, now: datetime) -> None:
    """SCORED with every score field set and the claim cleared.

    A score that is not finite is treated as a parse failure instead.
    """
    decoded, qual = result.decoded, result.qualification
    if qual is None or decoded is None or not math.isfinite(qual.score):
        apply_parse_failed(signal, "null_score_from_model", result.raw_head, now)
        return

    if qual.direction == Direction.SHORT:
        summary = decoded.short_summary
    elif qual.direction == Direction.LONG:
        summary = decoded.long_summary
    else:
        summary = f"LONG: {decoded.long_summary} | SHORT: {decoded.short_summary}"

    signal.status = SignalStatus.SCORED
    signal.ai_score = round(qual.score, 2)
    signal.ai_grade = qual.grade
    signal.ai_summary = f"{summary} [{qual.reason}]"
    signal.ai_direction = qual.direction.value
    signal.long_score = decoded.long_score
    signal.short_score = decoded.short_score
    signal.confidence = decoded.confidence
    signal.qualified = qual.qualified
    signal.qualify_reason = f"{qual.policy}: {qual.reason}"
    signal.scored_at = now
    signal.error = None
    signal.error_at = None
    signal.error_meta = None
    signal.clear_claim()
    signal.updated_at = now


def apply_parse_failed(signal: Signal, reason: str, raw_head: str | None, now: datetime) -> None:
    """ERROR/parse_failed with every score-dependent field removed."""
    signal.status = SignalStatus.ERROR
    signal.error = ScoreFailure.PARSE_FAILED.value
    signal.error_at = now
    signal.ai_summary = f"parse_failed: {reason}"
    signal.error_meta = {"raw_head": raw_head, "parse_error": reason}
    signal.clear_score_fields()
    signal.clear_claim()
    signal.updated_at = now


def score_error_code(failure: ScoreFailure | None, message: str | None) -> str:
    """Persisted error code for a non-parse scoring failure."""
    if failure == ScoreFailure.TIMEOUT or "timeout" in (message or "").lower():
        return "model_timeout"
    if failure == ScoreFailure.INSUFFICIENT_BARS:
        return ScoreFailure.INSUFFICIENT_BARS.value
    return "scoring_failed"


def apply_score_error(signal: Signal, result: ScoreResult, now: datetime) -> None:
    """ERROR with a distinct reason per failure class."""
    if result.failure == ScoreFailure.PARSE_FAILED:
        apply_parse_failed(signal, result.message or "unparseable", result.raw_head, now)
        return
    code = score_error_code(result.failure, result.message)
    signal.status = SignalStatus.ERROR
    signal.error = code
    signal.error_at = now
    signal.ai_summary = f"{code}: {result.message}"
    signal.error_meta = {"failure": result.failure.value if result.failure else None}
    signal.clear_score_fields()
    signal.clear_claim()
    signal.updated_at = now


def release_claim(signal: Signal, now: datetime) -> None:
    """Return a claimed signal to the queue."""
    signal.status = SignalStatus.PENDING
    signal.clear_claim()
    signal.updated_at = now
