"""Lifecycle constants and enums."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class SignalStatus(str, Enum):
    """Signal lifecycle status."""

    PENDING = "PENDING"
    SCORING = "SCORING"
    SCORED = "SCORED"
    ERROR = "ERROR"
    ARCHIVED = "ARCHIVED"


class TradeStatus(str, Enum):
    """Trade lifecycle status."""

    AUTO_PENDING = "AUTO_PENDING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ERROR = "ERROR"


class Side(str, Enum):
    """Trade direction."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1


class Direction(str, Enum):
    """Direction chosen by the scoring model."""

    LONG = "LONG"
    SHORT = "SHORT"
    NONE = "NONE"


class Tier(str, Enum):
    """Risk tier derived from a quality score."""

    A = "A"
    B = "B"
    C = "C"


class ScoreOutcome(str, Enum):
    """Outcome of one scoring attempt."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    SKIPPED = "SKIPPED"


class ScoreFailure(str, Enum):
    """Typed scoring failure reasons."""

    PARSE_FAILED = "parse_failed"
    INSUFFICIENT_BARS = "insufficient_bars"
    TIMEOUT = "timeout"
    OTHER = "other"


class ErrorKind(str, Enum):
    """Error classes counted by the scoring circuit breaker."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    OTHER = "other"


class EntryDecision(str, Enum):
    """Per-candidate decision of the entry engine."""

    SKIP = "SKIP"
    WOULD_EXECUTE = "WOULD_EXECUTE"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"


class SessionTag(str, Enum):
    """US equities session, Eastern time."""

    PRE = "PRE"
    RTH = "RTH"
    POST = "POST"
    CLOSED = "CLOSED"


class DrainStrategy(str, Enum):
    """Batch selection order for the scoring drain."""

    RECENT_FIRST = "recent_first"
    BACKLOG_OLDEST_FIRST = "backlog_oldest_first"


# Broker order statuses after which an order can no longer change
TERMINAL_ORDER_STATUSES = frozenset({"filled", "canceled", "expired", "rejected"})

# Broker order types that protect a position on the stop side
STOP_ORDER_TYPES = frozenset({"stop", "stop_limit", "trailing_stop"})


@dataclass(frozen=True)
class EngineConstants:
    """Fixed engine constants that are not environment tunable."""

    # Coordination keys
    DRAIN_LOCK_KEY: str = "ai:score:drain:lock"
    BREAKER_ERRORS_KEY: str = "ai:breaker:v1:errors"
    BREAKER_OPEN_KEY: str = "ai:breaker:v1:open"
    ENTRY_LOCK_KEY: str = "auto:exec:lock:{trade_id}"
    ENTRY_COUNT_KEY: str = "auto:entries:{et_date}"
    ENTRY_INFLIGHT_KEY: str = "auto:entries:inflight"
    ENTRY_FAILURES_KEY: str = "ae:failures:{et_date}"
    ENTRY_DISABLED_KEY: str = "ae:disabled"
    RECONCILE_LOCK_KEY: str = "reconcile:open-trades:lock"

    # Daily counters outlive the ET day they describe
    DAILY_COUNTER_TTL_SECONDS: int = 36 * 3600

    # Tick sizes (sub-dollar instruments trade in hundredths of a cent)
    SUB_DOLLAR_TICK: Decimal = Decimal("0.0001")
    DEFAULT_TICK: Decimal = Decimal("0.01")

    # Result detail sample cap
    DETAILS_CAP: int = 20

    # Maximum nesting depth walked in broker order payloads
    MAX_LEG_DEPTH: int = 4

    # Raw model output stored on parse failures
    RAW_HEAD_CHARS: int = 500


ENGINE = EngineConstants()
