"""Signal and trade ledger."""

from autopilot.ledger.guard import guard_signal, guard_signals, score_is_valid
from autopilot.ledger.records import Signal, Trade, TradeAi
from autopilot.ledger.store import Ledger, SignalStore, TradeStore

__all__ = [
    "Signal",
    "Trade",
    "TradeAi",
    "Ledger",
    "SignalStore",
    "TradeStore",
    "guard_signal",
    "guard_signals",
    "score_is_valid",
]
