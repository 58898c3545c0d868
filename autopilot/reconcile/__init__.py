"""Broker reconciliation."""

from autopilot.reconcile.fills import ExitFill, fill_from_activities, fill_from_legs, realized_pnl
from autopilot.reconcile.loop import BrokerReconciler
from autopilot.reconcile.truth import BrokerTruth

__all__ = [
    "BrokerReconciler",
    "BrokerTruth",
    "ExitFill",
    "fill_from_legs",
    "fill_from_activities",
    "realized_pnl",
]
