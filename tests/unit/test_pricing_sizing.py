"""Unit tests for decision pricing, bracket construction and tier sizing."""

from decimal import Decimal

import pytest

from autopilot.config.constants import Side, Tier
from autopilot.exceptions import PricingError
from autopilot.execution.broker import Quote
from autopilot.execution.pricing import (
    compute_bracket,
    is_on_tick,
    quantize_price,
    resolve_decision_price,
    tick_size,
)
from autopilot.execution.sizer import PositionSizer, tier_for_score


class TestTickSize:
    """Tests for tick quantization."""

    def test_tick_by_price(self):
        """Sub-dollar prices use a finer tick."""
        assert tick_size(Decimal("0.5")) == Decimal("0.0001")
        assert tick_size(Decimal("12.34")) == Decimal("0.01")

    def test_quantize_modes(self):
        """Floor, ceil and nearest land on the grid."""
        assert quantize_price(Decimal("95.006"), "floor") == Decimal("95.00")
        assert quantize_price(Decimal("95.001"), "ceil") == Decimal("95.01")
        assert quantize_price(Decimal("95.005"), "nearest") == Decimal("95.01")

    def test_sub_dollar_quantize(self):
        price = quantize_price(Decimal("0.123456"), "floor")
        assert price == Decimal("0.1234")
        assert is_on_tick(price, Decimal("0.0001"))


class TestDecisionPrice:
    """Tests for decision price resolution."""

    def test_prefers_mid(self):
        decision = resolve_decision_price(Quote("ABC", bid=10.0, ask=10.2, last=9.0), 8.0)
        assert decision.source == "mid"
        assert decision.price == Decimal("10.1")

    def test_falls_back_to_last_then_seed(self):
        assert resolve_decision_price(Quote("ABC", last=9.5), 8.0).source == "last"
        assert resolve_decision_price(Quote("ABC"), 8.0).source == "seed"

    def test_crossed_quote_is_ignored(self):
        """Ask below bid has no usable mid."""
        decision = resolve_decision_price(Quote("ABC", bid=10.2, ask=10.0, last=10.1), None)
        assert decision.source == "last"

    def test_no_price_raises(self):
        with pytest.raises(PricingError):
            resolve_decision_price(None, None)


class TestBracket:
    """Tests for bracket construction."""

    def test_long_bracket_ordering(self):
        bracket = compute_bracket(Side.LONG, Decimal("100.004"), Decimal("5"), 1.0)
        assert bracket.stop < bracket.entry < bracket.take_profit
        assert bracket.entry == Decimal("100.00")
        assert bracket.stop == Decimal("95.00")
        assert bracket.take_profit == Decimal("105.00")

    def test_short_bracket_ordering(self):
        bracket = compute_bracket(Side.SHORT, Decimal("50.00"), Decimal("1.333"), 2.0)
        assert bracket.take_profit < bracket.entry < bracket.stop
        # Short stops round up, away from the entry
        assert bracket.stop == Decimal("51.34")
        for price in (bracket.stop, bracket.take_profit):
            assert is_on_tick(price, bracket.tick)

    def test_bracket_collapsing_on_tick_rejected(self):
        """A stop distance below one tick cannot form a valid bracket."""
        with pytest.raises(PricingError):
            compute_bracket(Side.LONG, Decimal("10.00"), Decimal("0.001"), 0.1)

    def test_invalid_inputs_rejected(self):
        with pytest.raises(PricingError):
            compute_bracket(Side.LONG, Decimal("0"), Decimal("1"), 1.0)
        with pytest.raises(PricingError):
            compute_bracket(Side.LONG, Decimal("10"), Decimal("0"), 1.0)


class TestTierSizing:
    """Tests for tier-based position sizing."""

    def test_tier_mapping(self, settings):
        assert tier_for_score(9.0, settings) == Tier.A
        assert tier_for_score(8.0, settings) == Tier.B
        assert tier_for_score(7.0, settings) == Tier.C
        assert tier_for_score(5.0, settings) is None
        assert tier_for_score(None, settings) is None

    def test_tier_b_long_sizing(self, settings):
        """Entry 100, stop 95, tier B at 1.0x of $100 risk sizes to 20 shares."""
        size = PositionSizer(settings).calculate_tier_based(8.0, Decimal("100"), Decimal("95"))
        assert size.is_valid
        assert size.tier == Tier.B
        assert size.risk_mult == 1.0
        assert size.shares == 20

    def test_tier_multipliers_scale_quantity(self, settings):
        sizer = PositionSizer(settings)
        assert sizer.calculate_tier_based(9.0, Decimal("100"), Decimal("95")).shares == 30
        assert sizer.calculate_tier_based(7.0, Decimal("100"), Decimal("95")).shares == 10

    def test_below_lowest_tier_sizes_as_c(self, settings):
        size = PositionSizer(settings).calculate_tier_based(3.0, Decimal("100"), Decimal("95"))
        assert size.tier == Tier.C

    def test_minimum_one_share(self, settings):
        """Wide stops still size to at least one share."""
        size = PositionSizer(settings).calculate_tier_based(8.0, Decimal("1000"), Decimal("500"))
        assert size.shares == 1

    def test_zero_risk_rejected(self, settings):
        size = PositionSizer(settings).calculate_tier_based(8.0, Decimal("100"), Decimal("100"))
        assert not size.is_valid
        assert size.shares == 0
