"""
Module: produce_kernel.models.trade
Responsibility: ORM persistence for trades (purchase, sale, production
    documents) and their lines.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Sale and production line quantities are stored positive; direction
      comes from the owning trade's type.
    - A PURCHASE line with a negative quantity is a return to the vendor.
      It creates no lot and must point at the purchase line it returns
      (``parent_line_id``), whose lot it draws down.
    - Trade lines are never edited or deleted directly by callers; every
      change goes through the ReversalCoordinator so the aggregate cache and
      the ledger move in the same transaction.

Audit relevance:
    Ledger entries keep the originating trade line id after the line is
    deleted (no foreign key), so the trail survives line removal.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from produce_kernel.models.lot import Lot
    from produce_kernel.models.match import Match
    from produce_kernel.models.product import Product

_ZERO = Decimal("0")


class TradeType(str, Enum):
    """Kind of trade document."""

    PURCHASE = "PURCHASE"
    SALE = "SALE"
    PRODUCTION = "PRODUCTION"

    @property
    def creates_lots(self) -> bool:
        return self in (TradeType.PURCHASE, TradeType.PRODUCTION)


class MatchingStatus(str, Enum):
    """How much of a sale line has been attributed to lots."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    MATCHED = "MATCHED"


class Trade(TrackedBase):
    """
    A purchase, sale or production document.

    Contract:
        Owns its lines.  warehouse_id and company_id are opaque identifiers
        from the outer layer, copied onto lots so audits can scope by
        warehouse.
    """

    __tablename__ = "trades"

    __table_args__ = (
        Index("idx_trade_type_date", "trade_type", "trade_date"),
    )

    trade_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    trade_type: Mapped[str] = mapped_column(String(20), nullable=False)

    trade_date: Mapped[date] = mapped_column(Date, nullable=False)

    company_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    warehouse_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    lines: Mapped[list["TradeLine"]] = relationship(
        back_populates="trade",
        order_by="TradeLine.seq_no",
    )

    @property
    def type(self) -> TradeType:
        return TradeType(self.trade_type)

    def __repr__(self) -> str:
        return f"<Trade {self.trade_number or self.id}: {self.trade_type} {self.trade_date}>"


class TradeLine(TrackedBase):
    """
    One product line on a trade.

    Guarantees:
        - matched_quantity / unmatched_quantity / matching_status are derived
          from live Match rows, never stored.
    """

    __tablename__ = "trade_lines"

    __table_args__ = (
        Index("idx_trade_line_trade", "trade_id"),
        Index("idx_trade_line_product", "product_id"),
    )

    trade_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trades.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Purchase line a return draws against
    parent_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("trade_lines.id"),
        nullable=True,
    )

    seq_no: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=_ZERO,
    )

    # Explicit weight wins over product.unit_weight * quantity
    total_weight: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    trade: Mapped["Trade"] = relationship(back_populates="lines")

    product: Mapped["Product"] = relationship()

    lot: Mapped["Lot | None"] = relationship(back_populates="line", uselist=False)

    parent_line: Mapped["TradeLine | None"] = relationship(remote_side="TradeLine.id")

    matches: Mapped[list["Match"]] = relationship(
        back_populates="sale_line",
        order_by="Match.matched_at",
    )

    @property
    def trade_type(self) -> TradeType:
        return self.trade.type

    @property
    def abs_quantity(self) -> Decimal:
        return abs(self.quantity)

    @property
    def is_return(self) -> bool:
        """Negative purchase line drawn against its parent purchase lot."""
        return self.trade_type == TradeType.PURCHASE and self.quantity < 0

    @property
    def effective_weight(self) -> Decimal:
        """Explicit total weight, else product unit weight times quantity."""
        if self.total_weight is not None:
            return abs(self.total_weight)
        unit_weight = self.product.unit_weight if self.product is not None else None
        if unit_weight is None:
            return _ZERO
        return unit_weight * self.abs_quantity

    @property
    def matched_quantity(self) -> Decimal:
        return sum((m.quantity for m in self.matches), _ZERO)

    @property
    def unmatched_quantity(self) -> Decimal:
        return max(self.abs_quantity - self.matched_quantity, _ZERO)

    @property
    def matching_status(self) -> MatchingStatus:
        matched = self.matched_quantity
        if matched <= 0:
            return MatchingStatus.PENDING
        if matched < self.abs_quantity:
            return MatchingStatus.PARTIAL
        return MatchingStatus.MATCHED

    @property
    def matched_unit_price(self) -> Decimal | None:
        """Weighted-average captured lot price over this line's matches."""
        matched = self.matched_quantity
        if matched <= 0:
            return None
        cost = sum((m.quantity * m.lot_unit_price for m in self.matches), _ZERO)
        return cost / matched

    def __repr__(self) -> str:
        return f"<TradeLine {self.id}: product={self.product_id} qty={self.quantity} @ {self.unit_price}>"
