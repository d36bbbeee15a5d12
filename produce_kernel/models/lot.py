"""
Module: produce_kernel.models.lot
Responsibility: ORM persistence for purchase lots -- the batches that sale
    quantities are drawn from.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - remaining_quantity is never negative (CHECK constraint plus LotStore
      validation before every reduction).
    - status is derived: AVAILABLE iff remaining_quantity > 0.  It is only
      ever written through ``refresh_status()``, which every LotStore
      mutation calls.
    - (product_id, purchase_date, display_order) index supports the
      automatic-matching tie-break: oldest purchase first, then lowest
      manual display rank.

Failure modes:
    - IntegrityError if remaining_quantity would be stored negative.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from produce_kernel.models.match import Match
    from produce_kernel.models.product import Product
    from produce_kernel.models.trade import TradeLine


class LotStatus(str, Enum):
    """Availability of a lot; derived from remaining_quantity."""

    AVAILABLE = "AVAILABLE"
    DEPLETED = "DEPLETED"


class Lot(TrackedBase):
    """
    One purchase (or production output) batch.

    Contract:
        Created by LotStore.create_lot on purchase/production recording and
        by LotStore.transfer for the target side of a warehouse move.
        Mutated only through LotStore (reduce/restore/reshape/set order).

    Non-goals:
        - Lots are never physically deleted while a Match, an adjustment or
          an open audit item references them (LotInUseError).
    """

    __tablename__ = "lots"

    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_non_negative"),
        Index("idx_lot_fifo", "product_id", "purchase_date", "display_order"),
        Index("idx_lot_warehouse_status", "warehouse_id", "status"),
    )

    trade_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("trade_lines.id"),
        nullable=True,
        unique=True,
    )

    # Source lot of a warehouse transfer; NULL for purchase/production lots
    parent_lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=True,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    warehouse_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    company_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    original_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    remaining_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    original_weight: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    remaining_weight: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LotStatus.AVAILABLE.value,
    )

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    line: Mapped["TradeLine | None"] = relationship(back_populates="lot")

    product: Mapped["Product"] = relationship()

    matches: Mapped[list["Match"]] = relationship(back_populates="lot")

    @property
    def is_available(self) -> bool:
        return self.status == LotStatus.AVAILABLE.value

    @property
    def value(self) -> Decimal:
        return self.remaining_quantity * self.unit_price

    def refresh_status(self) -> None:
        """Re-derive status from remaining_quantity."""
        if self.remaining_quantity > 0:
            self.status = LotStatus.AVAILABLE.value
        else:
            self.status = LotStatus.DEPLETED.value

    def __repr__(self) -> str:
        return (
            f"<Lot {self.id}: product={self.product_id} "
            f"{self.remaining_quantity}/{self.original_quantity} @ {self.unit_price} {self.status}>"
        )
