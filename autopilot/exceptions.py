"""Exception hierarchy shared by the engines."""

from autopilot.config.constants import ScoreFailure


class AutopilotError(Exception):
    """Base class for all autopilot errors."""


class LedgerError(AutopilotError):
    """Ledger read or write failed."""


class PricingError(AutopilotError):
    """No usable decision price, or a bracket that violates its invariants."""


class ScoringError(AutopilotError):
    """Scoring failed with a typed reason."""

    def __init__(self, failure: ScoreFailure, message: str = ""):
        super().__init__(message or failure.value)
        self.failure = failure


class BrokerError(AutopilotError):
    """Broker API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BrokerNotFoundError(BrokerError):
    """Broker answered 404: the entity definitely does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class BrokerTruthError(BrokerError):
    """Positions or open orders could not be fetched."""
