"""
Module: produce_kernel.models.closing
Responsibility: ORM persistence for day/period closing snapshots and their
    per-lot valuation detail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One snapshot per closing_date (UNIQUE).
    - Detail rows copy lot and product ids without foreign keys; a closed
      period's detail must survive later lot deletion.
    - Only the most recent snapshot may be rewritten or deleted
      (ClosingStore).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import Base, TrackedBase, UUIDString


class ClosingSnapshot(TrackedBase):
    """Persisted valuation for the period [start_date, closing_date]."""

    __tablename__ = "closing_snapshots"

    closing_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    prior_inventory_value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    current_inventory_value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    period_purchase_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    cost_of_goods_sold: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    sales_revenue: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    gross_profit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    note: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    details: Mapped[list["ClosingSnapshotDetail"]] = relationship(
        back_populates="closing",
        cascade="all, delete-orphan",
    )

    @property
    def detail_value(self) -> Decimal:
        return sum((d.total_value for d in self.details), Decimal("0"))

    def __repr__(self) -> str:
        return (
            f"<ClosingSnapshot {self.start_date}..{self.closing_date} "
            f"value={self.current_inventory_value}>"
        )


class ClosingSnapshotDetail(Base):
    """Valuation of one lot at closing time."""

    __tablename__ = "closing_snapshot_details"

    closing_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("closing_snapshots.id"),
        nullable=False,
    )

    lot_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    total_value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    closing: Mapped["ClosingSnapshot"] = relationship(back_populates="details")
