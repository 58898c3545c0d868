"""Process-wide engine wiring shared by the API routes.

Components are built on first use so the app imports without reaching
Redis, the database or the broker. Tests replace them with set_component().
"""

from typing import Any

from autopilot.coordination.store import get_redis
from autopilot.execution.broker import AlpacaBroker
from autopilot.execution.entry import AutoEntryEngine
from autopilot.ledger.store import Ledger
from autopilot.maintenance import Maintenance
from autopilot.reconcile.loop import BrokerReconciler
from autopilot.risk.guardrails import EntryGuardrails
from autopilot.scoring.breaker import ScoringCircuitBreaker
from autopilot.scoring.client import ScoringClient
from autopilot.scoring.context import MarketContextBuilder
from autopilot.scoring.drain import ScoringDrain

_components: dict[str, Any] = {}


def _build(name: str) -> Any:
    if name == "redis":
        return get_redis()
    if name == "ledger":
        return Ledger()
    if name == "broker":
        return AlpacaBroker()
    if name == "breaker":
        return ScoringCircuitBreaker(get_component("redis"))
    if name == "scoring_client":
        return ScoringClient(
            breaker=get_component("breaker"),
            context_builder=MarketContextBuilder(get_component("broker")),
        )
    if name == "guardrails":
        return EntryGuardrails(get_component("redis"))
    raise KeyError(f"Unknown component: {name}")


def get_component(name: str) -> Any:
    """Shared component by name, built on first access."""
    if name not in _components:
        _components[name] = _build(name)
    return _components[name]


def set_component(name: str, value: Any) -> None:
    _components[name] = value


def reset_components() -> None:
    _components.clear()


def get_drain() -> ScoringDrain:
    return ScoringDrain(get_component("ledger"), get_component("scoring_client"), get_component("redis"))


def get_entry_engine() -> AutoEntryEngine:
    return AutoEntryEngine(
        get_component("ledger"),
        get_component("broker"),
        get_component("redis"),
        scoring_client=get_component("scoring_client"),
    )


def get_reconciler() -> BrokerReconciler:
    return BrokerReconciler(get_component("ledger"), get_component("broker"), get_component("redis"))


def get_maintenance() -> Maintenance:
    return Maintenance(get_component("ledger"), get_component("broker"), get_component("guardrails"))
