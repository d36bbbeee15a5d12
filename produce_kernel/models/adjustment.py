"""
Module: produce_kernel.models.adjustment
Responsibility: ORM persistence for lot quantity corrections produced by
    audits, manual adjustments and production consumption.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Every row moves its lot, the aggregate and the ledger in the same
      unit of work (AdjustmentService).
    - Append-only (db/immutability.py).  An audit revert never deletes the
      finalize adjustments; it appends inverse rows that point back at them
      through reverses_id.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from produce_kernel.db.base import Base, UUIDString


class AdjustmentKind(str, Enum):
    AUDIT = "AUDIT"
    AUDIT_REVERT = "AUDIT_REVERT"
    MANUAL = "MANUAL"
    PRODUCTION = "PRODUCTION"
    PRODUCTION_REVERT = "PRODUCTION_REVERT"


class AdjustmentEntry(Base):
    """A signed quantity change applied to one lot."""

    __tablename__ = "adjustment_entries"

    __table_args__ = (
        Index("idx_adjustment_lot", "lot_id"),
        Index("idx_adjustment_audit_run", "audit_session_id", "audit_run"),
        Index("idx_adjustment_trade", "trade_id"),
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_change: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    adjusted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    audit_session_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("audit_sessions.id"),
        nullable=True,
    )

    # Which finalize of the session produced this row
    audit_run: Mapped[int | None] = mapped_column(Integer, nullable=True)

    reverses_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Production trade that consumed the lot (no FK; survives trade deletion)
    trade_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<AdjustmentEntry {self.kind} lot={self.lot_id} change={self.quantity_change}>"
