"""Qualification policies and grading.

Two policies coexist, each usable on its own:
- ScoreThresholdPolicy for signals that already carry a side.
- EdgeCompetitionPolicy for signals without a side, where long and short
  compete and the winner must clear both a floor and an edge.
"""

from dataclasses import dataclass

from autopilot.config.constants import Direction, Side
from autopilot.config.settings import Settings, get_settings
from autopilot.scoring.decoder import DecodedScore

GRADE_THRESHOLDS = (
    (9.0, "A+"),
    (8.5, "A"),
    (7.5, "B"),
    (6.0, "C"),
    (4.0, "D"),
)

GRADE_RANK = {"A+": 6, "A": 5, "B": 4, "C": 3, "D": 2, "F": 1}


def grade_from_score(score: float) -> str:
    """Letter grade for a score in [0, 10]."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


@dataclass
class Qualification:
    """Outcome of a qualification policy."""

    qualified: bool
    direction: Direction
    score: float
    grade: str
    reason: str
    policy: str


class ScoreThresholdPolicy:
    """Qualify a sided signal on its own side's score."""

    name = "score_threshold"

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def evaluate(self, decoded: DecodedScore, side: Side) -> Qualification:
        score = decoded.long_score if side == Side.LONG else decoded.short_score
        other = decoded.short_score if side == Side.LONG else decoded.long_score
        grade = grade_from_score(score)

        if self._settings.ai_qualify_mode == "grade":
            minimum = self._settings.ai_min_grade_to_qualify
            qualified = GRADE_RANK[grade] >= GRADE_RANK[minimum]
            rule = f"grade {grade} vs min {minimum}"
        else:
            minimum = self._settings.ai_min_score_to_qualify
            qualified = score >= minimum
            rule = f"score {score:.2f} vs min {minimum:.2f}"

        return Qualification(
            qualified=qualified,
            direction=Direction(side.value),
            score=score,
            grade=grade,
            reason=f"{side.value} {rule} (opposite side {other:.2f})",
            policy=self.name,
        )


class EdgeCompetitionPolicy:
    """Pick a direction for an unsided signal by long/short competition."""

    name = "edge_competition"

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def evaluate(self, decoded: DecodedScore) -> Qualification:
        long_score, short_score = decoded.long_score, decoded.short_score
        edge = abs(long_score - short_score)
        min_edge = self._settings.ai_min_edge

        if long_score > short_score:
            direction, score, floor = Direction.LONG, long_score, self._settings.ai_min_long_score
        elif short_score > long_score:
            direction, score, floor = Direction.SHORT, short_score, self._settings.ai_min_short_score
        else:
            best = max(long_score, short_score)
            return Qualification(
                qualified=False,
                direction=Direction.NONE,
                score=best,
                grade=grade_from_score(best),
                reason=f"tie at {best:.2f}",
                policy=self.name,
            )

        if score < floor:
            reason = f"{direction.value} {score:.2f} below floor {floor:.2f}"
            qualified = False
        elif edge < min_edge:
            reason = f"edge {edge:.2f} below {min_edge:.2f}"
            qualified = False
        else:
            reason = f"{direction.value} {score:.2f} with edge {edge:.2f}"
            qualified = True

        return Qualification(
            qualified=qualified,
            direction=direction if qualified else Direction.NONE,
            score=score,
            grade=grade_from_score(score),
            reason=reason,
            policy=self.name,
        )


def qualify(decoded: DecodedScore, side: Side | None, settings: Settings | None = None) -> Qualification:
    """Route to the policy matching whether the signal carries a side."""
    if side is not None:
        return ScoreThresholdPolicy(settings).evaluate(decoded, side)
    return EdgeCompetitionPolicy(settings).evaluate(decoded)
