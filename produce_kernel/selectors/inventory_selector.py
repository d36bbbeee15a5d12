"""
Module: produce_kernel.selectors.inventory_selector
Responsibility: Read views over lots, sale matching status, audit items,
    aggregate rows, the ledger and period trade totals.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Audit item views read ``current_quantity`` from the live lot on every
      call, next to the frozen ``system_quantity``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from produce_kernel.exceptions import (
    AuditSessionNotFoundError,
    LotNotFoundError,
    NotASaleLineError,
    TradeLineNotFoundError,
)
from produce_kernel.models.aggregate import AggregateRow
from produce_kernel.models.audit import AuditItem, AuditSession
from produce_kernel.models.ledger_entry import LedgerEntry
from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.models.match import Match
from produce_kernel.models.trade import MatchingStatus, Trade, TradeLine, TradeType
from produce_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LotView:
    lot_id: UUID
    product_id: UUID
    warehouse_id: str | None
    purchase_date: date
    unit_price: Decimal
    original_quantity: Decimal
    remaining_quantity: Decimal
    remaining_weight: Decimal
    status: str
    display_order: int
    matched_quantity: Decimal

    @property
    def value(self) -> Decimal:
        return self.remaining_quantity * self.unit_price


@dataclass(frozen=True)
class SaleLineView:
    trade_line_id: UUID
    product_id: UUID
    quantity: Decimal
    matched_quantity: Decimal
    unmatched_quantity: Decimal
    matching_status: MatchingStatus
    matched_unit_price: Decimal | None


@dataclass(frozen=True)
class AuditItemView:
    item_id: UUID
    lot_id: UUID | None
    product_id: UUID
    position: int
    system_quantity: Decimal
    current_quantity: Decimal
    actual_quantity: Decimal
    is_checked: bool
    notes: str | None

    @property
    def drift(self) -> Decimal:
        """Live movement since the baseline was frozen."""
        return self.current_quantity - self.system_quantity

    @property
    def difference(self) -> Decimal:
        return self.actual_quantity - self.system_quantity


@dataclass(frozen=True)
class AggregateView:
    product_id: UUID
    quantity: Decimal
    weight: Decimal
    purchase_price: Decimal
    manual_price: Decimal | None
    inventory_value: Decimal
    last_synced_at: datetime | None


@dataclass(frozen=True)
class LedgerEntryView:
    seq: int
    transaction_date: date
    kind: str
    origin: str
    phase: str
    product_id: UUID
    quantity_delta: Decimal
    weight_delta: Decimal
    unit_price: Decimal | None
    before_quantity: Decimal
    after_quantity: Decimal
    trade_line_id: UUID | None
    lot_id: UUID | None
    annotation: str | None


class InventorySelector(BaseSelector):
    """Read-only inventory views."""

    def _matched_on_lot(self, lot_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(Match.quantity), 0)).where(Match.lot_id == lot_id)
        ).scalar()
        return Decimal(str(total))

    def _lot_view(self, lot: Lot) -> LotView:
        return LotView(
            lot_id=lot.id,
            product_id=lot.product_id,
            warehouse_id=lot.warehouse_id,
            purchase_date=lot.purchase_date,
            unit_price=lot.unit_price,
            original_quantity=lot.original_quantity,
            remaining_quantity=lot.remaining_quantity,
            remaining_weight=lot.remaining_weight,
            status=lot.status,
            display_order=lot.display_order,
            matched_quantity=self._matched_on_lot(lot.id),
        )

    def get_lot(self, lot_id: UUID) -> LotView:
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return self._lot_view(lot)

    def list_lots(
        self,
        *,
        product_id: UUID | None = None,
        warehouse_id: str | None = None,
        available_only: bool = False,
    ) -> list[LotView]:
        """Lots in FIFO order: oldest purchase first, then display order."""
        stmt = select(Lot)
        if product_id is not None:
            stmt = stmt.where(Lot.product_id == product_id)
        if warehouse_id is not None:
            stmt = stmt.where(Lot.warehouse_id == warehouse_id)
        if available_only:
            stmt = stmt.where(Lot.status == LotStatus.AVAILABLE.value)
        stmt = stmt.order_by(Lot.purchase_date, Lot.display_order)
        return [self._lot_view(lot) for lot in self.session.execute(stmt).scalars()]

    def sale_line(self, trade_line_id: UUID) -> SaleLineView:
        line = self.session.get(TradeLine, trade_line_id)
        if line is None:
            raise TradeLineNotFoundError(str(trade_line_id))
        if line.trade_type != TradeType.SALE:
            raise NotASaleLineError(str(line.id), line.trade.trade_type)
        return SaleLineView(
            trade_line_id=line.id,
            product_id=line.product_id,
            quantity=line.abs_quantity,
            matched_quantity=line.matched_quantity,
            unmatched_quantity=line.unmatched_quantity,
            matching_status=line.matching_status,
            matched_unit_price=line.matched_unit_price,
        )

    def audit_items(self, session_id: UUID) -> list[AuditItemView]:
        if self.session.get(AuditSession, session_id) is None:
            raise AuditSessionNotFoundError(str(session_id))
        items = self.session.execute(
            select(AuditItem)
            .where(AuditItem.session_id == session_id)
            .order_by(AuditItem.position)
        ).scalars()
        return [
            AuditItemView(
                item_id=item.id,
                lot_id=item.lot_id,
                product_id=item.product_id,
                position=item.position,
                system_quantity=item.system_quantity,
                current_quantity=item.current_quantity,
                actual_quantity=item.actual_quantity,
                is_checked=item.is_checked,
                notes=item.notes,
            )
            for item in items
        ]

    def get_aggregate(self, product_id: UUID) -> AggregateView | None:
        row = self.session.execute(
            select(AggregateRow).where(AggregateRow.product_id == product_id)
        ).scalar_one_or_none()
        return self._aggregate_view(row) if row is not None else None

    def list_aggregates(self) -> list[AggregateView]:
        rows = self.session.execute(select(AggregateRow)).scalars()
        return [self._aggregate_view(row) for row in rows]

    def _aggregate_view(self, row: AggregateRow) -> AggregateView:
        return AggregateView(
            product_id=row.product_id,
            quantity=row.quantity,
            weight=row.weight,
            purchase_price=row.purchase_price,
            manual_price=row.manual_price,
            inventory_value=row.inventory_value,
            last_synced_at=row.last_synced_at,
        )

    def list_ledger(
        self,
        *,
        product_id: UUID | None = None,
        trade_line_id: UUID | None = None,
        since: date | None = None,
    ) -> list[LedgerEntryView]:
        """Ledger entries in seq order."""
        stmt = select(LedgerEntry)
        if product_id is not None:
            stmt = stmt.where(LedgerEntry.product_id == product_id)
        if trade_line_id is not None:
            stmt = stmt.where(LedgerEntry.trade_line_id == trade_line_id)
        if since is not None:
            stmt = stmt.where(LedgerEntry.transaction_date >= since)
        stmt = stmt.order_by(LedgerEntry.seq)
        return [
            LedgerEntryView(
                seq=e.seq,
                transaction_date=e.transaction_date,
                kind=e.kind,
                origin=e.origin,
                phase=e.phase,
                product_id=e.product_id,
                quantity_delta=e.quantity_delta,
                weight_delta=e.weight_delta,
                unit_price=e.unit_price,
                before_quantity=e.before_quantity,
                after_quantity=e.after_quantity,
                trade_line_id=e.trade_line_id,
                lot_id=e.lot_id,
                annotation=e.annotation,
            )
            for e in self.session.execute(stmt).scalars()
        ]

    def period_trade_total(self, trade_type: TradeType, start: date, end: date) -> Decimal:
        """
        Sum of quantity * unit price of lines of one trade type in [start, end].

        Purchase returns carry negative quantities and reduce the total.
        """
        rows = self.session.execute(
            select(TradeLine.quantity, TradeLine.unit_price)
            .join(Trade, TradeLine.trade_id == Trade.id)
            .where(
                Trade.trade_type == trade_type.value,
                Trade.trade_date >= start,
                Trade.trade_date <= end,
            )
        ).all()
        return sum((qty * price for qty, price in rows), _ZERO)
