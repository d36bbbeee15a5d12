"""
Tests for price policies, production costing and closing arithmetic.
"""

from decimal import Decimal

import pytest

from produce_engines.costing import (
    IngredientUse,
    PricePolicy,
    compute_closing,
    policy_price,
    production_cost,
)


class TestPolicyPrice:
    def test_max(self):
        pairs = [(Decimal("10"), Decimal("3")), (Decimal("1"), Decimal("9"))]

        assert policy_price(pairs, PricePolicy.MAX) == Decimal("9")

    def test_weighted_average(self):
        pairs = [(Decimal("30"), Decimal("2")), (Decimal("10"), Decimal("6"))]

        assert policy_price(pairs, PricePolicy.WEIGHTED_AVERAGE) == Decimal("3")

    def test_no_lots_is_zero(self):
        assert policy_price([], PricePolicy.MAX) == Decimal("0")
        assert policy_price([], PricePolicy.WEIGHTED_AVERAGE) == Decimal("0")


class TestProductionCost:
    def test_unit_cost_includes_additional_cost(self):
        cost = production_cost(
            ingredients=[
                IngredientUse(Decimal("10"), Decimal("2")),
                IngredientUse(Decimal("5"), Decimal("4")),
            ],
            output_quantity=Decimal("8"),
            additional_cost=Decimal("10"),
        )

        assert cost.ingredient_cost == Decimal("40")
        assert cost.total_cost == Decimal("50")
        assert cost.unit_cost == Decimal("6.25")

    def test_output_must_be_positive(self):
        with pytest.raises(ValueError):
            production_cost(ingredients=[], output_quantity=Decimal("0"))

    def test_additional_cost_cannot_be_negative(self):
        with pytest.raises(ValueError):
            production_cost(
                ingredients=[],
                output_quantity=Decimal("1"),
                additional_cost=Decimal("-1"),
            )


class TestClosing:
    def test_cogs_and_gross_profit(self):
        figures = compute_closing(
            prior_inventory_value=Decimal("1000"),
            current_inventory_value=Decimal("700"),
            period_purchase_cost=Decimal("500"),
            sales_revenue=Decimal("1200"),
        )

        assert figures.cost_of_goods_sold == Decimal("800")
        assert figures.gross_profit == Decimal("400")
