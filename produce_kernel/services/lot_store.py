"""
LotStore -- owner of purchase lots and their remaining quantity.

Responsibility:
    Creates lots when purchases and production outputs are recorded, draws
    them down and restores them for matches, adjustments and reversals,
    reshapes them when a purchase line is edited, and maintains the manual
    display order used as the automatic-matching tie-break.

Architecture position:
    Kernel > Services.  Used by MatchEngine, ReversalCoordinator,
    AdjustmentService and the facade.

Invariants enforced:
    - remaining_quantity never goes negative: ``reduce_lot`` raises
      InsufficientStockError before touching the row.
    - Status is re-derived by ``Lot.refresh_status()`` after every mutation
      and never written any other way.
    - sum(matches over a lot) <= original_quantity survives purchase edits:
      ``reshape_lot`` raises OverMatchError before shrinking below it.
    - A lot referenced by a match, an adjustment or an open audit item is
      never deleted (LotInUseError).  Items of closed audit sessions are
      detached (``lot_id`` set to NULL) when their lot goes away.
    - A transfer moves quantity out of one lot into a new child lot in
      another warehouse at the same price and purchase date.

Failure modes:
    - LotNotFoundError for unknown ids.
    - InsufficientStockError on over-reduction.
    - InvalidQuantityError for negative reduce/restore quantities.
    - InvalidTransferError for a transfer into the lot's own warehouse.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from dataclasses import dataclass

from sqlalchemy import func, or_, select, update

from produce_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    LotInUseError,
    LotNotFoundError,
    OverMatchError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.adjustment import AdjustmentEntry
from produce_kernel.models.audit import AuditItem, AuditSession, AuditStatus
from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.models.match import Match
from produce_kernel.models.trade import TradeLine
from produce_kernel.models.transfer import WarehouseTransfer
from produce_kernel.services.base import BaseService

logger = get_logger("services.lot_store")

_ZERO = Decimal("0")


def weight_share(lot: Lot, quantity: Decimal) -> Decimal:
    """Weight carried by ``quantity`` units of a lot, pro rata."""
    if lot.original_quantity <= 0:
        return _ZERO
    return lot.original_weight * quantity / lot.original_quantity


@dataclass(frozen=True)
class LotTransfer:
    transfer: WarehouseTransfer
    source: Lot
    target: Lot


class LotStore(BaseService):
    """
    Lot lifecycle.

    Contract:
        Every mutation flushes and leaves ``status`` consistent with
        ``remaining_quantity``.

    Non-goals:
        - Does NOT touch the aggregate cache or the ledger; callers pair
          lot movements with those in the same unit of work.
    """

    def get_lot(self, lot_id: UUID, *, for_update: bool = True) -> Lot:
        """Load a lot, row-locked by default."""
        stmt = select(Lot).where(Lot.id == lot_id)
        if for_update:
            stmt = stmt.with_for_update()
        lot = self.session.execute(stmt).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def create_lot(
        self,
        *,
        product_id: UUID,
        purchase_date: date,
        unit_price: Decimal,
        quantity: Decimal,
        weight: Decimal = _ZERO,
        trade_line_id: UUID | None = None,
        warehouse_id: str | None = None,
        company_id: str | None = None,
        parent_lot_id: UUID | None = None,
    ) -> Lot:
        """
        Create a lot at the end of its product's display order.

        Raises:
            InvalidQuantityError: If quantity is not positive.
        """
        if quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "lot quantity must be positive")

        max_order = self.session.execute(
            select(func.max(Lot.display_order)).where(Lot.product_id == product_id)
        ).scalar()

        lot = Lot(
            trade_line_id=trade_line_id,
            parent_lot_id=parent_lot_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
            company_id=company_id,
            purchase_date=purchase_date,
            unit_price=unit_price,
            original_quantity=quantity,
            remaining_quantity=quantity,
            original_weight=weight,
            remaining_weight=weight,
            status=LotStatus.AVAILABLE.value,
            display_order=(max_order or 0) + 1,
        )
        lot.refresh_status()
        self.session.add(lot)
        self.session.flush()

        logger.info(
            "lot_created",
            extra={
                "lot_id": str(lot.id),
                "product_id": str(product_id),
                "quantity": str(quantity),
                "unit_price": str(unit_price),
                "display_order": lot.display_order,
            },
        )
        return lot

    def reduce_lot(
        self,
        lot_id: UUID,
        quantity: Decimal,
        weight: Decimal | None = None,
    ) -> Lot:
        """
        Draw ``quantity`` out of a lot.

        Weight defaults to the lot's pro-rata share and is floored at zero.

        Raises:
            InsufficientStockError: If quantity exceeds remaining_quantity.
        """
        if quantity < 0:
            raise InvalidQuantityError("quantity", quantity, "cannot reduce by a negative amount")
        lot = self.get_lot(lot_id)
        if quantity > lot.remaining_quantity:
            raise InsufficientStockError(
                "lot", str(lot.id), quantity, lot.remaining_quantity
            )

        if weight is None:
            weight = weight_share(lot, quantity)
        lot.remaining_quantity -= quantity
        lot.remaining_weight = max(lot.remaining_weight - weight, _ZERO)
        lot.refresh_status()
        self.session.flush()

        logger.debug(
            "lot_reduced",
            extra={
                "lot_id": str(lot.id),
                "quantity": str(quantity),
                "remaining": str(lot.remaining_quantity),
                "status": lot.status,
            },
        )
        return lot

    def restore_lot(
        self,
        lot_id: UUID,
        quantity: Decimal,
        weight: Decimal | None = None,
    ) -> Lot:
        """Give ``quantity`` back to a lot.  Unconditional; used by reversals."""
        if quantity < 0:
            raise InvalidQuantityError("quantity", quantity, "cannot restore a negative amount")
        lot = self.get_lot(lot_id)

        if weight is None:
            weight = weight_share(lot, quantity)
        lot.remaining_quantity += quantity
        lot.remaining_weight += weight
        lot.refresh_status()
        self.session.flush()

        logger.debug(
            "lot_restored",
            extra={
                "lot_id": str(lot.id),
                "quantity": str(quantity),
                "remaining": str(lot.remaining_quantity),
                "status": lot.status,
            },
        )
        return lot

    def reshape_lot(
        self,
        lot_id: UUID,
        *,
        quantity_diff: Decimal,
        weight_diff: Decimal,
        unit_price: Decimal,
        product_id: UUID,
        purchase_date: date,
    ) -> Lot:
        """
        Follow an edit of the purchase line that created the lot.

        Original and remaining quantity shift by the same difference, so
        whatever was already drawn stays drawn.

        Raises:
            LotInUseError: Product change on a lot with matches.
            OverMatchError: Original quantity would drop below what is
                already matched against the lot.
            InsufficientStockError: Remaining quantity would go negative.
        """
        lot = self.get_lot(lot_id)
        if product_id != lot.product_id and self.has_matches(lot.id):
            raise LotInUseError(str(lot.id), "product cannot change on a matched lot")
        new_original = lot.original_quantity + quantity_diff
        matched = self.matched_quantity(lot.id)
        if new_original < matched:
            raise OverMatchError("lot", str(lot.id), matched, new_original)
        new_remaining = lot.remaining_quantity + quantity_diff
        if new_remaining < 0:
            raise InsufficientStockError(
                "lot", str(lot.id), -quantity_diff, lot.remaining_quantity
            )

        lot.original_quantity = new_original
        lot.remaining_quantity = new_remaining
        lot.original_weight = max(lot.original_weight + weight_diff, _ZERO)
        lot.remaining_weight = max(lot.remaining_weight + weight_diff, _ZERO)
        lot.unit_price = unit_price
        lot.product_id = product_id
        lot.purchase_date = purchase_date
        lot.refresh_status()
        self.session.flush()

        logger.info(
            "lot_reshaped",
            extra={
                "lot_id": str(lot.id),
                "quantity_diff": str(quantity_diff),
                "unit_price": str(unit_price),
                "remaining": str(lot.remaining_quantity),
            },
        )
        return lot

    def set_manual_order(self, lot_ids: Sequence[UUID]) -> list[Lot]:
        """Assign display order 1..n in the given sequence."""
        lots = []
        for rank, lot_id in enumerate(lot_ids, start=1):
            lot = self.get_lot(lot_id)
            lot.display_order = rank
            lots.append(lot)
        self.session.flush()
        logger.info("lots_reordered", extra={"lot_count": len(lots)})
        return lots

    def transfer(
        self,
        lot_id: UUID,
        quantity: Decimal,
        to_warehouse_id: str | None,
        *,
        transfer_date: date,
        notes: str | None = None,
        actor: str | None = None,
    ) -> LotTransfer:
        """
        Move part of a lot into another warehouse.

        The source lot is drawn down; a child lot with the same product,
        price and purchase date and the pro-rata weight is created in the
        target warehouse, and the move is recorded.

        Raises:
            InvalidQuantityError: Quantity is not positive.
            InvalidTransferError: Target is the lot's own warehouse.
            InsufficientStockError: Quantity exceeds remaining_quantity.
        """
        if quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "transfer quantity must be positive")
        source = self.get_lot(lot_id)
        if source.warehouse_id == to_warehouse_id:
            raise InvalidTransferError(str(source.id), "target is the lot's own warehouse")

        weight = weight_share(source, quantity)
        self.reduce_lot(source.id, quantity, weight)
        target = self.create_lot(
            product_id=source.product_id,
            purchase_date=source.purchase_date,
            unit_price=source.unit_price,
            quantity=quantity,
            weight=weight,
            warehouse_id=to_warehouse_id,
            company_id=source.company_id,
            parent_lot_id=source.id,
        )
        record = WarehouseTransfer(
            transfer_date=transfer_date,
            product_id=source.product_id,
            source_lot_id=source.id,
            target_lot_id=target.id,
            from_warehouse_id=source.warehouse_id,
            to_warehouse_id=to_warehouse_id,
            quantity=quantity,
            weight=weight,
            unit_price=source.unit_price,
            notes=notes,
            actor=actor,
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            "lot_transferred",
            extra={
                "transfer_id": str(record.id),
                "source_lot_id": str(source.id),
                "target_lot_id": str(target.id),
                "from_warehouse_id": source.warehouse_id,
                "to_warehouse_id": to_warehouse_id,
                "quantity": str(quantity),
            },
        )
        return LotTransfer(transfer=record, source=source, target=target)

    def has_matches(self, lot_id: UUID) -> bool:
        return self._exists(Match, Match.lot_id == lot_id)

    def matched_quantity(self, lot_id: UUID) -> Decimal:
        """Sum of every match drawn against a lot."""
        total = self.session.execute(
            select(func.coalesce(func.sum(Match.quantity), 0)).where(Match.lot_id == lot_id)
        ).scalar()
        return Decimal(str(total))

    def in_use_reason(self, lot: Lot) -> str | None:
        """Why a lot cannot be deleted, or None if it can."""
        if self.has_matches(lot.id):
            return "lot has sale matches"
        if self._exists(AdjustmentEntry, AdjustmentEntry.lot_id == lot.id):
            return "lot has adjustment history"
        open_item = self.session.execute(
            select(AuditItem.id)
            .join(AuditSession, AuditItem.session_id == AuditSession.id)
            .where(
                AuditItem.lot_id == lot.id,
                AuditSession.status == AuditStatus.IN_PROGRESS.value,
            )
            .limit(1)
        ).first()
        if open_item is not None:
            return "lot is part of an open audit session"
        if self._exists(
            WarehouseTransfer,
            or_(
                WarehouseTransfer.source_lot_id == lot.id,
                WarehouseTransfer.target_lot_id == lot.id,
            ),
        ):
            return "lot has warehouse transfers"
        if lot.trade_line_id is not None and self._exists(
            TradeLine, TradeLine.parent_line_id == lot.trade_line_id
        ):
            return "lot has purchase returns"
        if lot.remaining_quantity != lot.original_quantity:
            return "lot has been drawn down"
        return None

    def delete_lot(self, lot_id: UUID) -> None:
        """
        Physically remove an untouched lot.

        Items of completed or cancelled audit sessions that counted the lot
        keep their figures and lose the lot reference.

        Raises:
            LotInUseError: If anything references or has drawn on the lot.
        """
        lot = self.get_lot(lot_id)
        reason = self.in_use_reason(lot)
        if reason is not None:
            raise LotInUseError(str(lot.id), reason)
        detached = self.session.execute(
            update(AuditItem).where(AuditItem.lot_id == lot.id).values(lot_id=None)
        ).rowcount
        self.session.delete(lot)
        self.session.flush()
        logger.info(
            "lot_deleted",
            extra={"lot_id": str(lot_id), "detached_audit_items": detached},
        )

    def latest_lot_id(self, product_id: UUID) -> UUID | None:
        """Most recent lot of a product: latest purchase date, then highest rank."""
        return self.session.execute(
            select(Lot.id)
            .where(Lot.product_id == product_id)
            .order_by(Lot.purchase_date.desc(), Lot.display_order.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _exists(self, model, criterion) -> bool:
        return (
            self.session.execute(select(model.id).where(criterion).limit(1)).first()
            is not None
        )
