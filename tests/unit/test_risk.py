"""Unit tests for session helpers, trade validation and entry guardrails."""

from datetime import datetime, timezone

import pytest

from autopilot.config.constants import ENGINE, SessionTag, Side, TradeStatus
from autopilot.config.settings import Settings
from autopilot.ledger.records import Trade
from autopilot.risk.guardrails import EntryGuardrails
from autopilot.risk.sessions import et_date, session_tag
from autopilot.risk.validator import TradeValidator

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)


class TestSessions:
    """Tests for Eastern-time session tagging."""

    def test_session_boundaries(self):
        # 2026-10-14 is in EDT (UTC-4)
        assert session_tag(datetime(2026, 10, 14, 9, 0, tzinfo=timezone.utc)) == SessionTag.PRE
        assert session_tag(datetime(2026, 10, 14, 13, 30, tzinfo=timezone.utc)) == SessionTag.RTH
        assert session_tag(datetime(2026, 10, 14, 20, 0, tzinfo=timezone.utc)) == SessionTag.POST
        assert session_tag(datetime(2026, 10, 15, 1, 0, tzinfo=timezone.utc)) == SessionTag.CLOSED

    def test_weekend_closed(self):
        assert session_tag(datetime(2026, 10, 17, 15, 0, tzinfo=timezone.utc)) == SessionTag.CLOSED

    def test_et_date_rolls_at_et_midnight(self):
        assert et_date(datetime(2026, 10, 15, 3, 0, tzinfo=timezone.utc)) == "2026-10-14"
        assert et_date(datetime(2026, 10, 15, 5, 0, tzinfo=timezone.utc)) == "2026-10-15"


class TestTradeValidator:
    """Tests for the TradeValidator class."""

    @pytest.fixture
    def validator(self):
        return TradeValidator()

    def _trade(self, **kwargs) -> Trade:
        fields = dict(
            id="t1",
            ticker="ABC",
            side=Side.LONG,
            entry_price=100.0,
            stop_price=95.0,
            target_price=110.0,
            created_at=NOW,
        )
        fields.update(kwargs)
        return Trade(**fields)

    def test_validate_valid_long(self, validator):
        result = validator.validate_trade(self._trade())
        assert result.is_valid is True

    def test_validate_valid_short(self, validator):
        result = validator.validate_trade(
            self._trade(side=Side.SHORT, stop_price=105.0, target_price=90.0)
        )
        assert result.is_valid is True

    def test_validate_missing_stop_loss(self, validator):
        result = validator.validate_trade(self._trade(stop_price=None))
        assert result.is_valid is False
        assert result.failure_code == "missing_field"
        assert "stop_price" in result.reason

    def test_validate_invalid_stop_loss_direction(self, validator):
        result = validator.validate_trade(self._trade(stop_price=102.0))
        assert result.is_valid is False
        assert result.failure_code == "price_direction"

    def test_validate_non_pending_status(self, validator):
        result = validator.validate_trade(self._trade(status=TradeStatus.OPEN))
        assert result.is_valid is False
        assert result.failure_code == "invalid_status"

    def test_wide_stop_warns(self, validator):
        result = validator.validate_trade(self._trade(stop_price=70.0, target_price=140.0))
        assert result.is_valid is True
        assert result.warnings


class TestEntryGuardrails:
    """Tests for the shared admission gates."""

    def test_remaining_capacity(self, redis_client, settings):
        guardrails = EntryGuardrails(redis_client, settings)
        guardrails.reserve_entry(NOW)
        guardrails.reserve_entry(NOW)
        report = guardrails.evaluate(NOW, market_open=True, open_positions=1)
        assert report.entries_today == 2
        assert report.remaining_entries == 3
        assert report.remaining_positions == 2
        assert report.blocking_reason() is None

    def test_daily_counter_expires(self, redis_client, settings):
        EntryGuardrails(redis_client, settings).reserve_entry(NOW)
        key = ENGINE.ENTRY_COUNT_KEY.format(et_date="2026-10-14")
        assert 0 < redis_client.ttl(key) <= ENGINE.DAILY_COUNTER_TTL_SECONDS

    def test_failures_auto_disable_and_reset(self, redis_client, settings):
        guardrails = EntryGuardrails(redis_client, settings)
        assert guardrails.record_failure(NOW) is False
        assert guardrails.record_failure(NOW) is False
        assert guardrails.record_failure(NOW) is True

        report = guardrails.evaluate(NOW, market_open=True, open_positions=0)
        assert report.blocking_reason() == "auto_disabled_failures"

        guardrails.reset_failures(NOW)
        assert guardrails.evaluate(NOW, True, 0).blocking_reason() is None

    def test_success_resets_failure_streak(self, redis_client, settings):
        guardrails = EntryGuardrails(redis_client, settings)
        guardrails.record_failure(NOW)
        guardrails.record_success(NOW)
        assert guardrails.evaluate(NOW, True, 0).consecutive_failures == 0

    def test_entry_reservation_stops_at_cap(self, redis_client):
        settings = Settings(auto_entry_enabled=True, auto_entry_max_entries_per_day=2)
        guardrails = EntryGuardrails(redis_client, settings)
        assert guardrails.reserve_entry(NOW) is True
        assert guardrails.reserve_entry(NOW) is True
        assert guardrails.reserve_entry(NOW) is False
        assert guardrails.evaluate(NOW, True, 0).entries_today == 2

        guardrails.release_entry(NOW)
        assert guardrails.reserve_entry(NOW) is True

    def test_position_reservation_counts_in_flight(self, redis_client):
        settings = Settings(auto_entry_enabled=True, auto_entry_max_open_positions=2)
        guardrails = EntryGuardrails(redis_client, settings)
        assert guardrails.reserve_position(lambda: 1) is True
        assert guardrails.reserve_position(lambda: 1) is False

        guardrails.release_position()
        assert guardrails.reserve_position(lambda: 1) is True
        assert redis_client.get(ENGINE.ENTRY_INFLIGHT_KEY) == "1"

    def test_release_never_goes_negative(self, redis_client, settings):
        guardrails = EntryGuardrails(redis_client, settings)
        guardrails.release_position()
        assert redis_client.get(ENGINE.ENTRY_INFLIGHT_KEY) == "0"

    def test_live_requires_permission(self, redis_client):
        settings = Settings(auto_entry_enabled=True, environment="live")
        report = EntryGuardrails(redis_client, settings).evaluate(NOW, True, 0)
        assert report.blocking_reason() == "live_not_permitted"

    def test_market_closed_only_blocks_real_runs(self, redis_client, settings):
        report = EntryGuardrails(redis_client, settings).evaluate(NOW, market_open=False, open_positions=0)
        assert report.blocking_reason() == "market_closed"
        assert report.blocking_reason(dry_run=True) is None
