"""
LedgerRecorder -- the only writer of ledger entries.

Responsibility:
    Appends one immutable LedgerEntry per inventory-quantity-affecting
    event: purchase/sale/production application, the two halves of a line
    edit, a line deletion, audit finalize/revert, manual adjustments and
    production consumption.

Architecture position:
    Kernel > Services.  Called by ReversalCoordinator and AdjustmentService
    in the same unit of work as the matching AggregateCache delta.

Invariants enforced:
    - ``append`` is the whole public surface.  There is no update or delete
      method, and db/immutability.py rejects ORM UPDATE/DELETE of entries.
    - ``seq`` comes from SequenceService (locked counter row), so replay
      order equals insertion order.
    - Kind is derived from phase and sign, never passed in by callers.

Audit relevance:
    The ValuationReconstructor derives every historical inventory value from
    these rows.  An entry that changed after the fact would silently rewrite
    past valuations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock
from produce_kernel.logging_config import get_logger
from produce_kernel.models.ledger_entry import (
    LedgerEntry,
    LedgerKind,
    LedgerOrigin,
    LedgerPhase,
)
from produce_kernel.services.base import BaseService
from produce_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger_recorder")


@dataclass(frozen=True)
class LedgerEntryDraft:
    """Everything an entry needs except seq, kind and timestamp."""

    transaction_date: date
    origin: LedgerOrigin
    phase: LedgerPhase
    product_id: UUID
    quantity_delta: Decimal
    weight_delta: Decimal
    before_quantity: Decimal
    after_quantity: Decimal
    unit_price: Decimal | None = None
    trade_line_id: UUID | None = None
    lot_id: UUID | None = None
    reference: str | None = None
    annotation: str | None = None
    actor: str | None = None


def kind_for(phase: LedgerPhase, quantity_delta: Decimal) -> LedgerKind:
    """IN/OUT for applied trade effects, ADJUST for everything else."""
    if phase == LedgerPhase.APPLY:
        return LedgerKind.IN if quantity_delta >= 0 else LedgerKind.OUT
    return LedgerKind.ADJUST


class LedgerRecorder(BaseService):
    """
    Append-only writer.

    Guarantees:
        - Each call inserts exactly one row and flushes.
        - Returned entries carry their allocated ``seq``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)

    def append(self, draft: LedgerEntryDraft) -> LedgerEntry:
        seq = self._sequences.next_value(SequenceService.LEDGER_ENTRY)
        kind = kind_for(draft.phase, draft.quantity_delta)

        entry = LedgerEntry(
            seq=seq,
            recorded_at=self.clock.now(),
            transaction_date=draft.transaction_date,
            kind=kind.value,
            origin=draft.origin.value,
            phase=draft.phase.value,
            product_id=draft.product_id,
            quantity_delta=draft.quantity_delta,
            weight_delta=draft.weight_delta,
            unit_price=draft.unit_price,
            before_quantity=draft.before_quantity,
            after_quantity=draft.after_quantity,
            trade_line_id=draft.trade_line_id,
            lot_id=draft.lot_id,
            reference=draft.reference,
            annotation=draft.annotation,
            actor=draft.actor,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_appended",
            extra={
                "seq": seq,
                "kind": kind.value,
                "origin": draft.origin.value,
                "phase": draft.phase.value,
                "product_id": str(draft.product_id),
                "quantity_delta": str(draft.quantity_delta),
                "after_quantity": str(draft.after_quantity),
            },
        )
        return entry
