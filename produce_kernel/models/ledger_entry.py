"""
Module: produce_kernel.models.ledger_entry
Responsibility: ORM persistence for the append-only inventory change log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: ORM listeners in db/immutability.py reject UPDATE and
      DELETE of any LedgerEntry.
    - seq is unique and strictly increasing in insertion order; replay walks
      entries by seq.
    - trade_line_id and lot_id deliberately carry no foreign key: the line or
      lot may later be deleted, the history must not be.

Audit relevance:
    This table is the only source of historical truth.  The valuation
    reconstructor derives every past inventory value from it.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from produce_kernel.db.base import Base, UUIDString


class LedgerKind(str, Enum):
    """Transaction kind of a ledger entry."""

    IN = "IN"
    OUT = "OUT"
    ADJUST = "ADJUST"


class LedgerOrigin(str, Enum):
    """What produced the entry; selects the valuation pricing tier."""

    PURCHASE = "PURCHASE"
    SALE = "SALE"
    PRODUCTION = "PRODUCTION"
    AUDIT = "AUDIT"
    MANUAL = "MANUAL"
    TRANSFER = "TRANSFER"


class LedgerPhase(str, Enum):
    """Annotation separating apply and reversal halves of an edit."""

    APPLY = "apply"
    REVERSE_OLD = "reverse-old"
    APPLY_NEW = "apply-new"
    REVERSE_DELETE = "reverse-delete"
    AUDIT_FINALIZE = "audit-finalize"
    AUDIT_REVERT = "audit-revert"
    MANUAL_ADJUST = "manual-adjust"
    PRODUCTION_CONSUME = "production-consume"
    TRANSFER_OUT = "transfer-out"
    TRANSFER_IN = "transfer-in"


class LedgerEntry(Base):
    """
    One inventory-quantity-affecting event.

    Contract:
        Written only by LedgerRecorder.append().  quantity_delta is the
        signed effect on the product's aggregate quantity; before_quantity
        and after_quantity are the aggregate quantity around that effect.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_seq"),
        Index("idx_ledger_product_date", "product_id", "transaction_date"),
        Index("idx_ledger_trade_line", "trade_line_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    kind: Mapped[str] = mapped_column(String(10), nullable=False)

    origin: Mapped[str] = mapped_column(String(20), nullable=False)

    phase: Mapped[str] = mapped_column(String(30), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity_delta: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    weight_delta: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    before_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    after_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    trade_line_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lot_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    annotation: Mapped[str | None] = mapped_column(String(500), nullable=True)

    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry #{self.seq} {self.kind}/{self.phase} "
            f"product={self.product_id} delta={self.quantity_delta}>"
        )
