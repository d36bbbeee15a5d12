"""
Module: produce_kernel.models.match
Responsibility: ORM persistence for sale-to-lot matches.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity > 0 (CHECK constraint).
    - lot_unit_price is COPIED from the lot at match time; later lot price
      edits do not change the historical cost of goods sold.
    - Capacity rules (sum over a lot <= original quantity, sum over a sale
      line <= |line quantity|) are enforced by MatchEngine under row locks.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from produce_kernel.models.lot import Lot
    from produce_kernel.models.trade import TradeLine


class Match(Base):
    """A quantity of one sale line drawn from one lot."""

    __tablename__ = "matches"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_match_quantity_positive"),
        Index("idx_match_sale_line", "sale_line_id"),
        Index("idx_match_lot", "lot_id"),
    )

    sale_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trade_lines.id"),
        nullable=False,
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    lot_unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    matched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    matched_date: Mapped[date] = mapped_column(Date, nullable=False)

    sale_line: Mapped["TradeLine"] = relationship(back_populates="matches")

    lot: Mapped["Lot"] = relationship(back_populates="matches")

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.lot_unit_price

    def __repr__(self) -> str:
        return f"<Match {self.id}: line={self.sale_line_id} lot={self.lot_id} qty={self.quantity}>"
