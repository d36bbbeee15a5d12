"""
AggregateCache -- per-product rolling totals.

Responsibility:
    Maintains quantity, weight, last purchase price and inventory value per
    product incrementally (``apply_delta``), and rebuilds all rows from lot
    truth on demand (``hard_sync``).

Architecture position:
    Kernel > Services.  Written by ReversalCoordinator and
    AdjustmentService next to every ledger append; read by the valuation
    reconstructor for the live fast path.

Invariants enforced:
    - Incremental maintenance can drift (unmatched sales valued at the
      aggregate price, historical imports, bulk fixes).  That is accepted;
      ``hard_sync`` is the explicit repair and after it the stored
      inventory value equals sum(remaining * unit_price) over AVAILABLE
      lots exactly.
    - ``manual_price`` survives hard sync; it is operator data, not derived.

Failure modes:
    - InsufficientStockError from ``apply_delta(..., allow_negative=False)``
      when the product quantity would go below zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from produce_engines.costing import PricePolicy, policy_price
from produce_kernel.exceptions import InsufficientStockError, ProductNotFoundError
from produce_kernel.logging_config import get_logger
from produce_kernel.models.aggregate import AggregateRow
from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.models.product import Product
from produce_kernel.services.base import BaseService

logger = get_logger("services.aggregate_cache")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class AggregateChange:
    """Before/after snapshot of one product row around a delta."""

    product_id: UUID
    before_quantity: Decimal
    after_quantity: Decimal
    before_value: Decimal
    after_value: Decimal
    purchase_price: Decimal


@dataclass(frozen=True)
class HardSyncResult:
    products_synced: int
    lots_counted: int
    total_value: Decimal


class AggregateCache(BaseService):
    """
    Owned derived state with an explicit rebuild.

    Contract:
        ``apply_delta`` adds signed quantity and weight and moves the stored
        value by quantity times a unit cost; ``hard_sync`` recomputes every
        row from AVAILABLE lots.
    """

    def get_row(self, product_id: UUID) -> AggregateRow | None:
        return self.session.execute(
            select(AggregateRow).where(AggregateRow.product_id == product_id)
        ).scalar_one_or_none()

    def get_or_create(self, product_id: UUID) -> AggregateRow:
        """Locked row for a product, created empty on first use."""
        row = self.session.execute(
            select(AggregateRow)
            .where(AggregateRow.product_id == product_id)
            .with_for_update()
        ).scalar_one_or_none()
        if row is not None:
            return row
        if self.session.get(Product, product_id) is None:
            raise ProductNotFoundError(str(product_id))
        row = AggregateRow(
            product_id=product_id,
            quantity=_ZERO,
            weight=_ZERO,
            purchase_price=_ZERO,
            inventory_value=_ZERO,
        )
        self.session.add(row)
        self.session.flush()
        logger.debug("aggregate_row_created", extra={"product_id": str(product_id)})
        return row

    def apply_delta(
        self,
        product_id: UUID,
        quantity_delta: Decimal,
        weight_delta: Decimal,
        *,
        price_override: Decimal | None = None,
        unit_cost: Decimal | None = None,
        allow_negative: bool = True,
    ) -> AggregateChange:
        """
        Move one product's totals.

        Args:
            product_id: Product row to move.
            quantity_delta: Signed quantity change.
            weight_delta: Signed weight change.
            price_override: New last purchase price, set before valuing.
            unit_cost: Price used to value the quantity change; defaults to
                the (possibly overridden) purchase price.
            allow_negative: When False, reject a resulting negative quantity.
        """
        row = self.get_or_create(product_id)
        before_quantity = row.quantity
        before_value = row.inventory_value
        after_quantity = before_quantity + quantity_delta

        if not allow_negative and quantity_delta < 0 and after_quantity < 0:
            raise InsufficientStockError(
                "product", str(product_id), -quantity_delta, before_quantity
            )

        if price_override is not None:
            row.purchase_price = price_override
        cost = unit_cost if unit_cost is not None else row.purchase_price

        row.quantity = after_quantity
        row.weight = row.weight + weight_delta
        row.inventory_value = before_value + quantity_delta * cost
        self.session.flush()

        logger.debug(
            "aggregate_delta_applied",
            extra={
                "product_id": str(product_id),
                "quantity_delta": str(quantity_delta),
                "before_quantity": str(before_quantity),
                "after_quantity": str(after_quantity),
                "unit_cost": str(cost),
            },
        )
        return AggregateChange(
            product_id=product_id,
            before_quantity=before_quantity,
            after_quantity=after_quantity,
            before_value=before_value,
            after_value=row.inventory_value,
            purchase_price=row.purchase_price,
        )

    def set_manual_price(self, product_id: UUID, price: Decimal | None) -> AggregateRow:
        """Store (or clear) the operator-entered fallback price."""
        row = self.get_or_create(product_id)
        row.manual_price = price
        self.session.flush()
        logger.info(
            "aggregate_manual_price_set",
            extra={"product_id": str(product_id), "manual_price": str(price)},
        )
        return row

    def live_value(self) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(AggregateRow.inventory_value), 0))
        ).scalar()
        return Decimal(str(total))

    def hard_sync(self, policy: PricePolicy = PricePolicy.MAX) -> HardSyncResult:
        """
        Rebuild every row from AVAILABLE lots.

        Quantity, weight and value are zeroed on all rows first; products
        without available lots keep their last purchase price so valuation
        fallbacks still resolve.
        """
        now = self.clock.now()
        rows = {
            row.product_id: row
            for row in self.session.execute(select(AggregateRow)).scalars()
        }
        for row in rows.values():
            row.quantity = _ZERO
            row.weight = _ZERO
            row.inventory_value = _ZERO
            row.last_synced_at = now

        lots = self.session.execute(
            select(Lot)
            .where(Lot.status == LotStatus.AVAILABLE.value)
            .order_by(Lot.product_id, Lot.purchase_date, Lot.display_order)
        ).scalars().all()

        by_product: dict[UUID, list[Lot]] = {}
        for lot in lots:
            by_product.setdefault(lot.product_id, []).append(lot)

        total_value = _ZERO
        for product_id, product_lots in by_product.items():
            row = rows.get(product_id)
            if row is None:
                row = self.get_or_create(product_id)
                row.last_synced_at = now
                rows[product_id] = row
            row.quantity = sum((lot.remaining_quantity for lot in product_lots), _ZERO)
            row.weight = sum((lot.remaining_weight for lot in product_lots), _ZERO)
            row.inventory_value = sum((lot.value for lot in product_lots), _ZERO)
            row.purchase_price = policy_price(
                ((lot.remaining_quantity, lot.unit_price) for lot in product_lots),
                policy,
            )
            total_value += row.inventory_value

        self.session.flush()
        result = HardSyncResult(
            products_synced=len(rows),
            lots_counted=len(lots),
            total_value=total_value,
        )
        logger.info(
            "aggregate_hard_sync_completed",
            extra={
                "products_synced": result.products_synced,
                "lots_counted": result.lots_counted,
                "total_value": str(total_value),
                "price_policy": policy.value,
            },
        )
        return result
