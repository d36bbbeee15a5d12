"""
ClosingStore -- persisted day/period valuation snapshots.

Responsibility:
    Upserts the ClosingSnapshot for a closing date with its per-lot detail
    rows, and deletes the most recent snapshot (undo-last).

Architecture position:
    Kernel > Services.  The facade computes the figures (valuation
    reconstructor + closing arithmetic engine) and hands them in.

Invariants enforced:
    - One snapshot per closing date; re-closing the same date replaces its
      figures and detail rows.
    - Only the latest snapshot may be rewritten or deleted; a date older
      than the latest raises ClosingImmutableError.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from produce_engines.costing import ClosingFigures
from produce_kernel.exceptions import ClosingImmutableError, ClosingNotFoundError
from produce_kernel.logging_config import get_logger
from produce_kernel.models.closing import ClosingSnapshot, ClosingSnapshotDetail
from produce_kernel.services.base import BaseService

logger = get_logger("services.closing_store")


@dataclass(frozen=True)
class ClosingDetailDraft:
    lot_id: UUID
    product_id: UUID
    quantity: Decimal
    unit_price: Decimal

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.unit_price


class ClosingStore(BaseService):
    """Snapshot persistence with undo-last semantics."""

    def latest(self) -> ClosingSnapshot | None:
        return self.session.execute(
            select(ClosingSnapshot).order_by(ClosingSnapshot.closing_date.desc()).limit(1)
        ).scalar_one_or_none()

    def get_for_date(self, closing_date: date) -> ClosingSnapshot | None:
        return self.session.execute(
            select(ClosingSnapshot).where(ClosingSnapshot.closing_date == closing_date)
        ).scalar_one_or_none()

    def list_closings(self) -> list[ClosingSnapshot]:
        return list(
            self.session.execute(
                select(ClosingSnapshot).order_by(ClosingSnapshot.closing_date)
            ).scalars()
        )

    def close(
        self,
        *,
        start_date: date,
        closing_date: date,
        figures: ClosingFigures,
        details: Sequence[ClosingDetailDraft] = (),
        note: str | None = None,
    ) -> ClosingSnapshot:
        """
        Create or replace the snapshot for ``closing_date``.

        Raises:
            ClosingImmutableError: A later closing already exists.
        """
        latest = self.latest()
        if latest is not None and closing_date < latest.closing_date:
            raise ClosingImmutableError(closing_date, latest.closing_date)

        snapshot = self.get_for_date(closing_date)
        replaced = snapshot is not None
        if snapshot is None:
            snapshot = ClosingSnapshot(closing_date=closing_date)
            self.session.add(snapshot)
        else:
            snapshot.details.clear()

        snapshot.start_date = start_date
        snapshot.prior_inventory_value = figures.prior_inventory_value
        snapshot.current_inventory_value = figures.current_inventory_value
        snapshot.period_purchase_cost = figures.period_purchase_cost
        snapshot.cost_of_goods_sold = figures.cost_of_goods_sold
        snapshot.sales_revenue = figures.sales_revenue
        snapshot.gross_profit = figures.gross_profit
        snapshot.note = note
        snapshot.closed_at = self.clock.now()
        for detail in details:
            snapshot.details.append(
                ClosingSnapshotDetail(
                    lot_id=detail.lot_id,
                    product_id=detail.product_id,
                    quantity=detail.quantity,
                    unit_price=detail.unit_price,
                    total_value=detail.total_value,
                )
            )
        self.session.flush()

        logger.info(
            "closing_saved",
            extra={
                "closing_date": closing_date,
                "start_date": start_date,
                "replaced": replaced,
                "detail_count": len(details),
                "current_inventory_value": str(figures.current_inventory_value),
                "gross_profit": str(figures.gross_profit),
            },
        )
        return snapshot

    def delete_last(self) -> date:
        """
        Remove the most recent snapshot and return its date.

        Raises:
            ClosingNotFoundError: No snapshot exists.
        """
        latest = self.latest()
        if latest is None:
            raise ClosingNotFoundError()
        closing_date = latest.closing_date
        self.session.delete(latest)
        self.session.flush()
        logger.info("closing_deleted", extra={"closing_date": closing_date})
        return closing_date
