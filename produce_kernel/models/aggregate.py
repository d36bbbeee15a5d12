"""
Module: produce_kernel.models.aggregate
Responsibility: ORM persistence for the per-product aggregate cache.
Architecture position: Kernel > Models.  May import from db/ only.

The cache is derived state.  It is maintained incrementally by
AggregateCache.apply_delta and can drift (unmatched sales, historical
imports, bulk edits); AggregateCache.hard_sync rebuilds it from lots.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from produce_kernel.models.product import Product

_ZERO = Decimal("0")


class AggregateRow(TrackedBase):
    """Rolling totals for one product."""

    __tablename__ = "aggregate_cache"

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
        unique=True,
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)

    weight: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)

    # Price of the most recent purchase lot (or the sync policy price)
    purchase_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)

    # Operator-entered fallback price for valuation
    manual_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    inventory_value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    product: Mapped["Product"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<AggregateRow product={self.product_id} qty={self.quantity} "
            f"value={self.inventory_value}>"
        )
