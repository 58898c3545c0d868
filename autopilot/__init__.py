"""Signal-to-trade lifecycle backend: scoring drain, auto-entry and broker reconciliation."""

__version__ = "0.1.0"
