"""Signal scoring: model client, decoding, qualification and the drain."""

from autopilot.scoring.breaker import CircuitBreakerState, ScoringCircuitBreaker
from autopilot.scoring.client import ScoreResult, ScoringClient
from autopilot.scoring.context import MarketContext, MarketContextBuilder
from autopilot.scoring.decoder import DecodedScore, DecodeError, decode_model_output
from autopilot.scoring.drain import ScoringDrain
from autopilot.scoring.qualify import (
    EdgeCompetitionPolicy,
    Qualification,
    ScoreThresholdPolicy,
    grade_from_score,
    qualify,
)

__all__ = [
    "ScoringClient",
    "ScoreResult",
    "ScoringCircuitBreaker",
    "CircuitBreakerState",
    "MarketContext",
    "MarketContextBuilder",
    "DecodedScore",
    "DecodeError",
    "decode_model_output",
    "ScoringDrain",
    "ScoreThresholdPolicy",
    "EdgeCompetitionPolicy",
    "Qualification",
    "grade_from_score",
    "qualify",
]
