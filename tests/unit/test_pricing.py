"""
Unit Tests - Tiered Pricing
===========================
"""

import pytest

from services.pricing import PricingTier, calculate_tiered_cost, get_effective_rate, validate_pricing_tiers

LABOR_TIERS = [
    PricingTier(from_quantity=0, to_quantity=10, rate=50),
    PricingTier(from_quantity=10, to_quantity=50, rate=45),
    PricingTier(from_quantity=50, to_quantity=None, rate=40),
]


class TestCalculateTieredCost:

    @pytest.mark.unit
    def test_spans_all_tiers(self):
        result = calculate_tiered_cost(60, LABOR_TIERS, default_rate=55)

        assert result.total_cost == pytest.approx(2700.0)
        assert [c.quantity_in_tier for c in result.breakdown] == [10, 40, 10]
        assert [c.cost_in_tier for c in result.breakdown] == [500, 1800, 400]

    @pytest.mark.unit
    def test_within_first_tier(self):
        result = calculate_tiered_cost(5, LABOR_TIERS, default_rate=55)

        assert result.total_cost == pytest.approx(250.0)
        assert len(result.breakdown) == 1

    @pytest.mark.unit
    def test_tiers_accepted_as_dicts_in_any_order(self):
        tiers = [
            {"from_quantity": 10, "to_quantity": None, "rate": 8},
            {"from_quantity": 0, "to_quantity": 10, "rate": 10},
        ]

        assert calculate_tiered_cost(15, tiers, default_rate=0).total_cost == pytest.approx(140.0)

    @pytest.mark.unit
    def test_overflow_beyond_bounded_tiers_uses_last_rate(self):
        tiers = [
            PricingTier(from_quantity=0, to_quantity=10, rate=50),
            PricingTier(from_quantity=10, to_quantity=20, rate=45),
        ]

        result = calculate_tiered_cost(30, tiers, default_rate=99)

        assert result.total_cost == pytest.approx(1400.0)
        assert len(result.breakdown) == 3

    @pytest.mark.unit
    def test_no_tiers_is_flat_default_rate(self):
        result = calculate_tiered_cost(4, [], default_rate=55, currency="EUR")

        assert result.total_cost == pytest.approx(220.0)
        assert result.currency == "EUR"
        assert result.breakdown[0].tier.rate == 55

    @pytest.mark.unit
    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_costs_nothing(self, quantity):
        result = calculate_tiered_cost(quantity, LABOR_TIERS, default_rate=55)

        assert result.total_cost == 0.0
        assert result.breakdown == []


class TestEffectiveRate:

    @pytest.mark.unit
    def test_weighted_average(self):
        assert get_effective_rate(60, LABOR_TIERS, 55) == pytest.approx(45.0)

    @pytest.mark.unit
    def test_defaults_without_tiers_or_quantity(self):
        assert get_effective_rate(10, None, 55) == 55
        assert get_effective_rate(0, LABOR_TIERS, 55) == 55


class TestValidatePricingTiers:

    @pytest.mark.unit
    def test_valid_table(self):
        assert validate_pricing_tiers(LABOR_TIERS) == (True, [])

    @pytest.mark.unit
    def test_empty_table_is_valid(self):
        assert validate_pricing_tiers([]) == (True, [])

    @pytest.mark.unit
    def test_not_a_list(self):
        assert validate_pricing_tiers("tiers") == (False, ["Tiers must be an array"])

    @pytest.mark.unit
    def test_gap_between_tiers(self):
        valid, errors = validate_pricing_tiers([
            {"from_quantity": 0, "to_quantity": 10, "rate": 5},
            {"from_quantity": 12, "to_quantity": None, "rate": 4},
        ])

        assert not valid
        assert errors == ["Tier 1: Gap between tiers (ends at 10, next starts at 12)"]

    @pytest.mark.unit
    def test_unbounded_tier_must_be_last(self):
        valid, errors = validate_pricing_tiers([
            {"from_quantity": 0, "to_quantity": None, "rate": 5},
            {"from_quantity": 10, "to_quantity": None, "rate": 4},
        ])

        assert not valid
        assert "Tier 1: Only the last tier can have unlimited toQuantity" in errors

    @pytest.mark.unit
    def test_structural_errors(self):
        valid, errors = validate_pricing_tiers([
            {"from_quantity": 5, "to_quantity": 5, "rate": -1},
        ])

        assert not valid
        assert "Tier 1: toQuantity must be greater than fromQuantity" in errors
        assert "Tier 1: rate cannot be negative" in errors
        assert "First tier must start at 0" in errors
