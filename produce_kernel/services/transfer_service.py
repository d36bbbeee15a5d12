"""
TransferService -- stock moves between warehouses.

Responsibility:
    Moves part of a lot into another warehouse through
    ``LotStore.transfer`` and records the move in the aggregate cache and
    the ledger as a transfer-out / transfer-in pair.

Architecture position:
    Kernel > Services.  Composes LotStore, AggregateCache and
    LedgerRecorder, like AdjustmentService.

Invariants enforced:
    - Both ledger entries are ADJUST entries priced at the lot's unit
      price; together they net to zero on the product's quantity, weight
      and inventory value.
    - Lot failures (same warehouse, over-transfer) raise before any ledger
      write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock
from produce_kernel.logging_config import get_logger
from produce_kernel.models.ledger_entry import LedgerEntry, LedgerOrigin, LedgerPhase
from produce_kernel.models.lot import Lot
from produce_kernel.models.transfer import WarehouseTransfer
from produce_kernel.services.aggregate_cache import AggregateCache
from produce_kernel.services.base import BaseService
from produce_kernel.services.ledger_recorder import LedgerEntryDraft, LedgerRecorder
from produce_kernel.services.lot_store import LotStore

logger = get_logger("services.transfer")


@dataclass(frozen=True)
class TransferResult:
    transfer: WarehouseTransfer
    source: Lot
    target: Lot
    entries: tuple[LedgerEntry, LedgerEntry]


class TransferService(BaseService):
    """Warehouse moves with their ledger trail."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        lots: LotStore | None = None,
        aggregate: AggregateCache | None = None,
        ledger: LedgerRecorder | None = None,
    ):
        super().__init__(session, clock)
        self.lots = lots or LotStore(session, self.clock)
        self.aggregate = aggregate or AggregateCache(session, self.clock)
        self.ledger = ledger or LedgerRecorder(session, self.clock)

    def transfer(
        self,
        lot_id: UUID,
        quantity: Decimal,
        to_warehouse_id: str | None,
        *,
        transfer_date: date,
        notes: str | None = None,
        actor: str | None = None,
    ) -> TransferResult:
        """
        Move ``quantity`` of a lot into ``to_warehouse_id``.

        Raises:
            InvalidQuantityError, InvalidTransferError,
            InsufficientStockError: From LotStore.transfer.
        """
        moved = self.lots.transfer(
            lot_id,
            quantity,
            to_warehouse_id,
            transfer_date=transfer_date,
            notes=notes,
            actor=actor,
        )
        record = moved.transfer
        entries = (
            self._post(moved.source, record, -record.quantity, -record.weight, LedgerPhase.TRANSFER_OUT),
            self._post(moved.target, record, record.quantity, record.weight, LedgerPhase.TRANSFER_IN),
        )

        logger.info(
            "transfer_recorded",
            extra={
                "transfer_id": str(record.id),
                "product_id": str(record.product_id),
                "quantity": str(record.quantity),
                "out_seq": entries[0].seq,
                "in_seq": entries[1].seq,
            },
        )
        return TransferResult(
            transfer=record,
            source=moved.source,
            target=moved.target,
            entries=entries,
        )

    def _post(
        self,
        lot: Lot,
        record: WarehouseTransfer,
        quantity: Decimal,
        weight: Decimal,
        phase: LedgerPhase,
    ) -> LedgerEntry:
        change = self.aggregate.apply_delta(
            lot.product_id,
            quantity,
            weight,
            unit_cost=lot.unit_price,
        )
        return self.ledger.append(
            LedgerEntryDraft(
                transaction_date=record.transfer_date,
                origin=LedgerOrigin.TRANSFER,
                phase=phase,
                product_id=lot.product_id,
                quantity_delta=quantity,
                weight_delta=weight,
                before_quantity=change.before_quantity,
                after_quantity=change.after_quantity,
                unit_price=lot.unit_price,
                lot_id=lot.id,
                reference=str(record.id),
                annotation=f"{record.from_warehouse_id} -> {record.to_warehouse_id}",
                actor=record.actor,
            )
        )
