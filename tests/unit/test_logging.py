"""Unit tests for the log sink filters."""

from autopilot.monitoring.logger import engine_filter, trade_filter


def record(name: str, message: str = "run finished") -> dict:
    return {"name": name, "message": message}


class TestLogFilters:
    """Tests for routing records to the engine and trade sinks."""

    def test_engine_sink_takes_engine_modules(self):
        assert engine_filter(record("autopilot.scoring.drain")) is True
        assert engine_filter(record("autopilot.reconcile.loop")) is True
        assert engine_filter(record("autopilot.execution.entry")) is True

    def test_engine_sink_skips_other_modules(self):
        assert engine_filter(record("autopilot.scoring.client")) is False
        assert engine_filter(record("autopilot.api.main")) is False
        assert engine_filter(record("autopilot.reconciled")) is False

    def test_trade_sink_needs_module_and_subject(self):
        assert trade_filter(record("autopilot.execution.broker", "Order cancelled: ord-1")) is True
        assert trade_filter(record("autopilot.reconcile.loop", "Trade t1 closed: stop_hit")) is True
        assert trade_filter(record("autopilot.execution.broker", "AlpacaBroker initialized")) is False
        assert trade_filter(record("autopilot.api.routes.entry", "Trade t1 requested")) is False

    def test_missing_module_name(self):
        assert engine_filter(record(None)) is False
