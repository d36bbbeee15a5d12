"""
produce_engines.costing -- Price policies and closing arithmetic.

Responsibility:
    - Per-product price used when the aggregate cache is rebuilt from lots
      (``max`` of lot prices or quantity-weighted average).
    - Unit cost of a production output lot from its ingredients.
    - Closing figures: cost of goods sold and gross profit from inventory
      values, period purchases and sales revenue.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from produce_engines.tracer import traced_engine

_ZERO = Decimal("0")


class PricePolicy(str, Enum):
    """How hard sync derives the aggregate purchase price from lots."""

    MAX = "max"
    WEIGHTED_AVERAGE = "weighted_average"


def policy_price(
    lots: Iterable[tuple[Decimal, Decimal]],
    policy: PricePolicy,
) -> Decimal:
    """
    Derive one price from (remaining_quantity, unit_price) pairs.

    Returns zero when there are no lots.
    """
    pairs = list(lots)
    if not pairs:
        return _ZERO
    if policy == PricePolicy.MAX:
        return max(price for _, price in pairs)
    total_qty = sum((qty for qty, _ in pairs), _ZERO)
    if total_qty <= 0:
        return _ZERO
    return sum((qty * price for qty, price in pairs), _ZERO) / total_qty


@dataclass(frozen=True)
class IngredientUse:
    quantity: Decimal
    unit_price: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class ProductionCost:
    ingredient_cost: Decimal
    additional_cost: Decimal
    output_quantity: Decimal

    @property
    def total_cost(self) -> Decimal:
        return self.ingredient_cost + self.additional_cost

    @property
    def unit_cost(self) -> Decimal:
        return self.total_cost / self.output_quantity


@traced_engine("production_cost", "1.0", fingerprint_fields=("output_quantity", "additional_cost"))
def production_cost(
    *,
    ingredients: Iterable[IngredientUse],
    output_quantity: Decimal,
    additional_cost: Decimal = _ZERO,
) -> ProductionCost:
    """
    Cost a production run.

    Raises:
        ValueError: If output_quantity is not positive or additional_cost is
            negative.
    """
    if output_quantity <= 0:
        raise ValueError(f"Production output must be positive, got {output_quantity}")
    if additional_cost < 0:
        raise ValueError(f"Additional cost cannot be negative, got {additional_cost}")
    ingredient_cost = sum((i.cost for i in ingredients), _ZERO)
    return ProductionCost(
        ingredient_cost=ingredient_cost,
        additional_cost=additional_cost,
        output_quantity=output_quantity,
    )


@dataclass(frozen=True)
class ClosingFigures:
    prior_inventory_value: Decimal
    current_inventory_value: Decimal
    period_purchase_cost: Decimal
    sales_revenue: Decimal
    cost_of_goods_sold: Decimal
    gross_profit: Decimal


@traced_engine("closing_figures", "1.0")
def compute_closing(
    *,
    prior_inventory_value: Decimal,
    current_inventory_value: Decimal,
    period_purchase_cost: Decimal,
    sales_revenue: Decimal,
) -> ClosingFigures:
    """
    Periodic-inventory COGS: opening + purchases - closing.

    Gross profit is revenue minus that COGS.
    """
    cogs = prior_inventory_value + period_purchase_cost - current_inventory_value
    return ClosingFigures(
        prior_inventory_value=prior_inventory_value,
        current_inventory_value=current_inventory_value,
        period_purchase_cost=period_purchase_cost,
        sales_revenue=sales_revenue,
        cost_of_goods_sold=cogs,
        gross_profit=sales_revenue - cogs,
    )
