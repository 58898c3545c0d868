"""Configuration management for the autopilot."""

from autopilot.config.constants import (
    ENGINE,
    Direction,
    EngineConstants,
    EntryDecision,
    ScoreFailure,
    ScoreOutcome,
    SessionTag,
    Side,
    SignalStatus,
    Tier,
    TradeStatus,
)
from autopilot.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "ENGINE",
    "EngineConstants",
    "SignalStatus",
    "TradeStatus",
    "Side",
    "Direction",
    "Tier",
    "ScoreOutcome",
    "ScoreFailure",
    "EntryDecision",
    "SessionTag",
]
