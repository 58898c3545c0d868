"""Database models and utilities."""

from autopilot.database.connection import (
    get_engine,
    get_session,
    get_sync_session_factory,
    init_db,
    make_session_factory,
)
from autopilot.database.models import Base, SignalRow, TradeRow

__all__ = [
    "Base",
    "SignalRow",
    "TradeRow",
    "get_engine",
    "get_session",
    "get_sync_session_factory",
    "make_session_factory",
    "init_db",
]
