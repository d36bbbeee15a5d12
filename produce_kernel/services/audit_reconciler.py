"""
AuditReconciler -- physical stock counts against live lot state.

Responsibility:
    Runs the audit session state machine:

        start -> IN_PROGRESS --finalize--> COMPLETED --revert--> IN_PROGRESS
                     |
                     +--cancel--> CANCELLED (terminal; may then be deleted)

    On start, every AVAILABLE lot of the warehouse is snapshotted into an
    item whose ``system_quantity`` is frozen.  Counters enter
    ``actual_quantity``; ``current_quantity`` is read live from the lot so
    drift stays visible.  Finalize turns each non-zero
    ``actual - system`` into an AUDIT adjustment on the live lot; revert
    appends the inverse of the latest finalize run.

Architecture position:
    Kernel > Services.  Composes AdjustmentService for every lot move.

Invariants enforced:
    - ``system_quantity`` changes only through ``sync_item``; nothing rebases
      it automatically.
    - Every mutating operation checks the session status first and raises
      StaleAuditError when it does not match.
    - At most one IN_PROGRESS session per warehouse.
    - Finalize diffs against the (possibly stale) snapshot.  No lock is
      held on lots while a session is open; trading continues.
    - A lot can be deleted only while none of its sessions is IN_PROGRESS.
      Items of closed sessions then lose their lot and finalize skips them
      if the session is ever reverted.

Failure modes:
    - StaleAuditError, AuditSessionNotFoundError, AuditItemNotFoundError,
      AuditSessionConflictError, InvalidQuantityError,
      InsufficientStockError (a reduction larger than what the lot holds).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock
from produce_kernel.exceptions import (
    AuditItemNotFoundError,
    AuditSessionConflictError,
    AuditSessionNotFoundError,
    InvalidQuantityError,
    StaleAuditError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.adjustment import AdjustmentEntry, AdjustmentKind
from produce_kernel.models.audit import AuditItem, AuditSession, AuditStatus
from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.services.adjustment_service import AdjustmentRequest, AdjustmentService
from produce_kernel.services.base import BaseService

logger = get_logger("services.audit_reconciler")


@dataclass(frozen=True)
class AuditTransition:
    """Outcome of finalize or revert."""

    session_id: UUID
    status: AuditStatus
    run: int
    adjustments: tuple[AdjustmentEntry, ...]

    @property
    def net_quantity_change(self) -> Decimal:
        return sum((a.quantity_change for a in self.adjustments), Decimal("0"))


class AuditReconciler(BaseService):
    """
    Audit session state machine.

    Contract:
        Each transition is one unit of work in the caller's transaction.
        Finalize and revert either apply every adjustment or raise.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        adjustments: AdjustmentService | None = None,
    ):
        super().__init__(session, clock)
        self.adjustments = adjustments or AdjustmentService(session, self.clock)

    def get_session(self, session_id: UUID, *, for_update: bool = True) -> AuditSession:
        stmt = select(AuditSession).where(AuditSession.id == session_id)
        if for_update:
            stmt = stmt.with_for_update()
        audit = self.session.execute(stmt).scalar_one_or_none()
        if audit is None:
            raise AuditSessionNotFoundError(str(session_id))
        return audit

    def get_item(self, item_id: UUID) -> AuditItem:
        item = self.session.get(AuditItem, item_id)
        if item is None:
            raise AuditItemNotFoundError(str(item_id))
        return item

    def _require(self, audit: AuditSession, expected: AuditStatus) -> None:
        if audit.status != expected.value:
            raise StaleAuditError(str(audit.id), audit.status, expected.value)

    def _open_item(self, item_id: UUID) -> AuditItem:
        item = self.get_item(item_id)
        self._require(self.get_session(item.session_id), AuditStatus.IN_PROGRESS)
        return item

    def start(
        self,
        warehouse_id: str | None,
        *,
        audit_date: date | None = None,
        notes: str | None = None,
    ) -> AuditSession:
        """
        Open a session and snapshot the warehouse's AVAILABLE lots.

        ``actual_quantity`` starts equal to ``system_quantity``.
        """
        open_session = self.session.execute(
            select(AuditSession.id).where(
                AuditSession.warehouse_id == warehouse_id,
                AuditSession.status == AuditStatus.IN_PROGRESS.value,
            )
        ).scalar_one_or_none()
        if open_session is not None:
            raise AuditSessionConflictError(str(warehouse_id), str(open_session))

        audit = AuditSession(
            warehouse_id=warehouse_id,
            audit_date=audit_date or self.clock.today(),
            status=AuditStatus.IN_PROGRESS.value,
            finalize_run=0,
            notes=notes,
        )
        self.session.add(audit)

        stmt = select(Lot).where(Lot.status == LotStatus.AVAILABLE.value)
        if warehouse_id is not None:
            stmt = stmt.where(Lot.warehouse_id == warehouse_id)
        lots = self.session.execute(
            stmt.order_by(Lot.product_id, Lot.purchase_date, Lot.display_order)
        ).scalars().all()

        for position, lot in enumerate(lots, start=1):
            audit.items.append(
                AuditItem(
                    lot=lot,
                    product_id=lot.product_id,
                    position=position,
                    system_quantity=lot.remaining_quantity,
                    actual_quantity=lot.remaining_quantity,
                    is_checked=False,
                )
            )
        self.session.flush()

        logger.info(
            "audit_started",
            extra={
                "audit_session_id": str(audit.id),
                "warehouse_id": warehouse_id,
                "item_count": len(lots),
            },
        )
        return audit

    def update_item(
        self,
        item_id: UUID,
        *,
        actual_quantity: Decimal | None = None,
        notes: str | None = None,
        is_checked: bool | None = None,
    ) -> AuditItem:
        """Record a count.  Allowed only while the session is IN_PROGRESS."""
        item = self._open_item(item_id)
        if actual_quantity is not None:
            if actual_quantity < 0:
                raise InvalidQuantityError(
                    "actual_quantity", actual_quantity, "count cannot be negative"
                )
            item.actual_quantity = actual_quantity
        if notes is not None:
            item.notes = notes
        if is_checked is not None:
            item.is_checked = is_checked
        self.session.flush()
        logger.debug(
            "audit_item_updated",
            extra={
                "audit_item_id": str(item.id),
                "actual_quantity": str(item.actual_quantity),
                "is_checked": item.is_checked,
            },
        )
        return item

    def sync_item(self, item_id: UUID) -> AuditItem:
        """Re-freeze ``system_quantity`` to the lot's live remaining quantity."""
        item = self._open_item(item_id)
        previous = item.system_quantity
        item.system_quantity = item.current_quantity
        item.synced_at = self.clock.now()
        self.session.flush()
        logger.info(
            "audit_item_synced",
            extra={
                "audit_item_id": str(item.id),
                "lot_id": str(item.lot_id),
                "previous_system_quantity": str(previous),
                "system_quantity": str(item.system_quantity),
            },
        )
        return item

    def finalize(self, session_id: UUID, *, actor: str | None = None) -> AuditTransition:
        """Apply ``actual - system`` for every differing item; -> COMPLETED."""
        audit = self.get_session(session_id)
        self._require(audit, AuditStatus.IN_PROGRESS)

        audit.finalize_run += 1
        run = audit.finalize_run
        created = []
        detached = 0
        for item in audit.items:
            if item.is_detached:
                detached += 1
                continue
            diff = item.difference
            if diff == 0:
                continue
            created.append(
                self.adjustments.adjust(
                    AdjustmentRequest(
                        lot_id=item.lot_id,
                        quantity_change=diff,
                        kind=AdjustmentKind.AUDIT,
                        reason=item.notes
                        or f"counted {item.actual_quantity}, system {item.system_quantity}",
                        transaction_date=audit.audit_date,
                        audit_session_id=audit.id,
                        audit_run=run,
                        actor=actor,
                    )
                )
            )

        audit.status = AuditStatus.COMPLETED.value
        audit.finalized_at = self.clock.now()
        self.session.flush()

        logger.info(
            "audit_finalized",
            extra={
                "audit_session_id": str(audit.id),
                "run": run,
                "adjustment_count": len(created),
                "detached_item_count": detached,
            },
        )
        return AuditTransition(audit.id, AuditStatus.COMPLETED, run, tuple(created))

    def revert(self, session_id: UUID, *, actor: str | None = None) -> AuditTransition:
        """Append the inverse of the latest finalize run; -> IN_PROGRESS."""
        audit = self.get_session(session_id)
        self._require(audit, AuditStatus.COMPLETED)
        run = audit.finalize_run

        finalized = self.session.execute(
            select(AdjustmentEntry)
            .where(
                AdjustmentEntry.audit_session_id == audit.id,
                AdjustmentEntry.audit_run == run,
                AdjustmentEntry.kind == AdjustmentKind.AUDIT.value,
            )
            .order_by(AdjustmentEntry.adjusted_at)
        ).scalars().all()

        reverted = []
        for adjustment in reversed(finalized):
            reverted.append(
                self.adjustments.adjust(
                    AdjustmentRequest(
                        lot_id=adjustment.lot_id,
                        quantity_change=-adjustment.quantity_change,
                        kind=AdjustmentKind.AUDIT_REVERT,
                        reason=f"revert audit run {run}",
                        transaction_date=audit.audit_date,
                        audit_session_id=audit.id,
                        audit_run=run,
                        reverses_id=adjustment.id,
                        actor=actor,
                    )
                )
            )

        audit.status = AuditStatus.IN_PROGRESS.value
        audit.finalized_at = None
        self.session.flush()

        logger.info(
            "audit_reverted",
            extra={
                "audit_session_id": str(audit.id),
                "run": run,
                "adjustment_count": len(reverted),
            },
        )
        return AuditTransition(audit.id, AuditStatus.IN_PROGRESS, run, tuple(reverted))

    def cancel(self, session_id: UUID) -> AuditSession:
        """Discard an open session.  No inventory effect."""
        audit = self.get_session(session_id)
        self._require(audit, AuditStatus.IN_PROGRESS)
        audit.status = AuditStatus.CANCELLED.value
        self.session.flush()
        logger.info("audit_cancelled", extra={"audit_session_id": str(audit.id)})
        return audit

    def delete(self, session_id: UUID) -> None:
        """
        Physically remove a CANCELLED session without adjustment history.

        A session that was ever finalized keeps its rows: its adjustments
        point at it.
        """
        audit = self.get_session(session_id)
        self._require(audit, AuditStatus.CANCELLED)
        has_history = self.session.execute(
            select(AdjustmentEntry.id)
            .where(AdjustmentEntry.audit_session_id == audit.id)
            .limit(1)
        ).first()
        if has_history is not None:
            raise StaleAuditError(
                str(audit.id), audit.status, "CANCELLED without adjustment history"
            )
        self.session.delete(audit)
        self.session.flush()
        logger.info("audit_deleted", extra={"audit_session_id": str(session_id)})
