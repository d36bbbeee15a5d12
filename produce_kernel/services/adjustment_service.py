"""
AdjustmentService -- signed lot corrections with their ledger trail.

Responsibility:
    Writes one AdjustmentEntry and moves the lot, the aggregate cache and
    the ledger by the same signed quantity, all priced at the lot's unit
    price.  Shared by audit finalize/revert, manual adjustments and
    production consumption.

Architecture position:
    Kernel > Services.  Composes LotStore, AggregateCache and
    LedgerRecorder.

Invariants enforced:
    - A negative change goes through ``LotStore.reduce_lot`` and therefore
      fails with InsufficientStockError before anything else is written.
    - Adjustment rows are append-only; undo is a new row with
      ``reverses_id`` set.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock
from produce_kernel.exceptions import InvalidQuantityError
from produce_kernel.logging_config import get_logger
from produce_kernel.models.adjustment import AdjustmentEntry, AdjustmentKind
from produce_kernel.models.ledger_entry import LedgerOrigin, LedgerPhase
from produce_kernel.services.aggregate_cache import AggregateCache
from produce_kernel.services.base import BaseService
from produce_kernel.services.ledger_recorder import LedgerEntryDraft, LedgerRecorder
from produce_kernel.services.lot_store import LotStore, weight_share

logger = get_logger("services.adjustment")


_KIND_ROUTING: dict[AdjustmentKind, tuple[LedgerOrigin, LedgerPhase]] = {
    AdjustmentKind.AUDIT: (LedgerOrigin.AUDIT, LedgerPhase.AUDIT_FINALIZE),
    AdjustmentKind.AUDIT_REVERT: (LedgerOrigin.AUDIT, LedgerPhase.AUDIT_REVERT),
    AdjustmentKind.MANUAL: (LedgerOrigin.MANUAL, LedgerPhase.MANUAL_ADJUST),
    AdjustmentKind.PRODUCTION: (LedgerOrigin.PRODUCTION, LedgerPhase.PRODUCTION_CONSUME),
    AdjustmentKind.PRODUCTION_REVERT: (LedgerOrigin.PRODUCTION, LedgerPhase.REVERSE_DELETE),
}


@dataclass(frozen=True)
class AdjustmentRequest:
    lot_id: UUID
    quantity_change: Decimal
    kind: AdjustmentKind
    reason: str
    transaction_date: date
    audit_session_id: UUID | None = None
    audit_run: int | None = None
    reverses_id: UUID | None = None
    trade_id: UUID | None = None
    actor: str | None = None


class AdjustmentService(BaseService):
    """
    One adjustment = lot move + aggregate delta + ledger ADJUST entry.

    Non-goals:
        - Does NOT decide whether an adjustment is allowed by the audit
          state machine; AuditReconciler checks status first.
    """

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

    def adjust(self, request: AdjustmentRequest) -> AdjustmentEntry:
        """
        Apply one signed change to a lot.

        Raises:
            InvalidQuantityError: Zero change.
            InsufficientStockError: Negative change beyond remaining.
        """
        change = request.quantity_change
        if change == 0:
            raise InvalidQuantityError("quantity_change", change, "adjustment must be non-zero")

        lot = self.lots.get_lot(request.lot_id)
        weight = weight_share(lot, abs(change))
        if change < 0:
            self.lots.reduce_lot(lot.id, -change, weight)
            weight_delta = -weight
        else:
            self.lots.restore_lot(lot.id, change, weight)
            weight_delta = weight

        entry = AdjustmentEntry(
            lot_id=lot.id,
            product_id=lot.product_id,
            kind=request.kind.value,
            quantity_change=change,
            unit_price=lot.unit_price,
            reason=request.reason,
            adjusted_at=self.clock.now(),
            audit_session_id=request.audit_session_id,
            audit_run=request.audit_run,
            reverses_id=request.reverses_id,
            trade_id=request.trade_id,
            actor=request.actor,
        )
        self.session.add(entry)
        self.session.flush()

        change_result = self.aggregate.apply_delta(
            lot.product_id,
            change,
            weight_delta,
            unit_cost=lot.unit_price,
        )
        origin, phase = _KIND_ROUTING[request.kind]
        self.ledger.append(
            LedgerEntryDraft(
                transaction_date=request.transaction_date,
                origin=origin,
                phase=phase,
                product_id=lot.product_id,
                quantity_delta=change,
                weight_delta=weight_delta,
                before_quantity=change_result.before_quantity,
                after_quantity=change_result.after_quantity,
                unit_price=lot.unit_price,
                lot_id=lot.id,
                reference=str(entry.id),
                annotation=request.reason,
                actor=request.actor,
            )
        )

        logger.info(
            "lot_adjusted",
            extra={
                "adjustment_id": str(entry.id),
                "lot_id": str(lot.id),
                "adjustment_kind": request.kind.value,
                "quantity_change": str(change),
                "remaining": str(lot.remaining_quantity),
            },
        )
        return entry
