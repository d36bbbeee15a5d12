"""
Module: produce_kernel.models.audit
Responsibility: ORM persistence for physical stock-count sessions and their
    per-lot items.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - system_quantity is a frozen baseline taken at session start; only the
      explicit sync operation rewrites it.
    - current_quantity is never stored; it is read live from the lot so the
      drift between baseline and reality stays visible.
    - Status machine: IN_PROGRESS -> COMPLETED -> IN_PROGRESS (revert) or
      IN_PROGRESS -> CANCELLED (terminal).  Transitions live in
      AuditReconciler.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from produce_kernel.models.lot import Lot


class AuditStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AuditSession(TrackedBase):
    """One stock count of one warehouse."""

    __tablename__ = "audit_sessions"

    __table_args__ = (
        Index("idx_audit_warehouse_status", "warehouse_id", "status"),
    )

    warehouse_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    audit_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AuditStatus.IN_PROGRESS.value,
    )

    # Incremented on every finalize; adjustments remember their run
    finalize_run: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    items: Mapped[list["AuditItem"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="AuditItem.position",
    )

    @property
    def audit_status(self) -> AuditStatus:
        return AuditStatus(self.status)

    def __repr__(self) -> str:
        return f"<AuditSession {self.id}: warehouse={self.warehouse_id} {self.status}>"


class AuditItem(Base):
    """Snapshot of one lot inside an audit session."""

    __tablename__ = "audit_items"

    __table_args__ = (
        Index("idx_audit_item_session", "session_id"),
    )

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("audit_sessions.id"),
        nullable=False,
    )

    # NULL once the lot is deleted after the session closed
    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id", ondelete="SET NULL"),
        nullable=True,
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    system_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    actual_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    is_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped["AuditSession"] = relationship(back_populates="items")

    lot: Mapped["Lot | None"] = relationship()

    @property
    def is_detached(self) -> bool:
        return self.lot_id is None

    @property
    def current_quantity(self) -> Decimal:
        """Live remaining quantity of the lot, read on every access."""
        if self.lot_id is None or self.lot is None:
            return Decimal("0")
        return self.lot.remaining_quantity

    @property
    def drift(self) -> Decimal:
        return self.current_quantity - self.system_quantity

    @property
    def difference(self) -> Decimal:
        return self.actual_quantity - self.system_quantity

    def __repr__(self) -> str:
        return (
            f"<AuditItem lot={self.lot_id} system={self.system_quantity} "
            f"actual={self.actual_quantity}>"
        )
