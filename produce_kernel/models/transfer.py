"""
Module: produce_kernel.models.transfer
Responsibility: ORM persistence for stock moves between warehouses.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only (db/immutability.py).
    - The target lot carries the source lot's product, unit price and
      purchase date, so a move never changes inventory value.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from produce_kernel.db.base import TrackedBase, UUIDString


class WarehouseTransfer(TrackedBase):
    """One move of part of a lot into another warehouse."""

    __tablename__ = "warehouse_transfers"

    __table_args__ = (
        Index("idx_transfer_source_lot", "source_lot_id"),
        Index("idx_transfer_product_date", "product_id", "transfer_date"),
    )

    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    source_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    target_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    from_warehouse_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    to_warehouse_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    weight: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WarehouseTransfer {self.from_warehouse_id}->{self.to_warehouse_id} "
            f"lot={self.source_lot_id} qty={self.quantity}>"
        )
