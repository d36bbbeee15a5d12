"""
Module: produce_kernel.selectors.valuation_reconstructor
Responsibility: Total inventory value as of any date.

    date >= today          -> live aggregate value (fast path)
    closing stored for date -> the closing's detail sum, or its stored
                               current value when it has no detail rows
    otherwise              -> live value minus the replayed contribution of
                               every ledger entry dated after the date

Architecture position: Kernel > Selectors.  Loads ledger entries and price
    references, then delegates the arithmetic to
    produce_engines.valuation_replay.

Invariants enforced:
    - Never mutates state.
    - Never returns a negative value.  A negative replay is clamped to zero,
      flagged on the result and logged as a ReconstructionInconsistencyError
      (constructed, not raised) so reporting is never blocked by historical
      data defects.

Audit relevance:
    The ``valuation_clamped`` warning is the data-quality signal for missing
    or corrupted ledger history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select

from produce_engines.cost_cascade import EntryView, MatchedCost, PriceReferences
from produce_engines.valuation_replay import ReplayResult, replay_valuation
from produce_kernel.exceptions import ReconstructionInconsistencyError
from produce_kernel.logging_config import get_logger
from produce_kernel.models.aggregate import AggregateRow
from produce_kernel.models.closing import ClosingSnapshot
from produce_kernel.models.ledger_entry import LedgerEntry, LedgerOrigin
from produce_kernel.models.lot import Lot
from produce_kernel.models.match import Match
from produce_kernel.models.trade import Trade, TradeLine, TradeType
from produce_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.valuation")

_ZERO = Decimal("0")


class ValuationSource(str, Enum):
    LIVE = "live"
    CLOSING = "closing"
    REPLAY = "replay"


@dataclass(frozen=True)
class ValuationResult:
    """Inventory value for one date and how it was obtained."""

    as_of: date
    value: Decimal
    source: ValuationSource
    live_value: Decimal
    raw_value: Decimal
    clamped: bool = False
    entries_replayed: int = 0
    closing_id: UUID | None = None

    @property
    def is_consistent(self) -> bool:
        return not self.clamped


class ValuationReconstructor(BaseSelector):
    """
    Read-only valuation.

    Contract:
        ``value_at`` always returns a result; data-quality problems are
        reported through ``clamped`` and the log, never raised.
    """

    def live_value(self) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(AggregateRow.inventory_value), 0))
        ).scalar()
        return Decimal(str(total))

    def value_at(self, as_of: date, *, use_closings: bool = True) -> ValuationResult:
        live = self.live_value()
        if as_of >= self.clock.today():
            return ValuationResult(
                as_of=as_of,
                value=live,
                source=ValuationSource.LIVE,
                live_value=live,
                raw_value=live,
            )

        if use_closings:
            snapshot = self.session.execute(
                select(ClosingSnapshot).where(ClosingSnapshot.closing_date == as_of)
            ).scalar_one_or_none()
            if snapshot is not None:
                value = (
                    snapshot.detail_value
                    if snapshot.details
                    else snapshot.current_inventory_value
                )
                return ValuationResult(
                    as_of=as_of,
                    value=value,
                    source=ValuationSource.CLOSING,
                    live_value=live,
                    raw_value=value,
                    closing_id=snapshot.id,
                )

        replay = self.replay(as_of, live)
        if replay.clamped:
            error = ReconstructionInconsistencyError(as_of, replay.raw_value)
            logger.warning(
                "valuation_clamped",
                extra={
                    "error_code": error.code,
                    "as_of": as_of,
                    "raw_value": str(replay.raw_value),
                    "live_value": str(live),
                    "entries_replayed": replay.entry_count,
                    "detail": str(error),
                },
            )
        return ValuationResult(
            as_of=as_of,
            value=replay.value,
            source=ValuationSource.REPLAY,
            live_value=live,
            raw_value=replay.raw_value,
            clamped=replay.clamped,
            entries_replayed=replay.entry_count,
        )

    def replay(self, as_of: date, live_value: Decimal) -> ReplayResult:
        """Run the backward replay from ``live_value`` without shortcuts."""
        entries = [
            EntryView(
                seq=row.seq,
                transaction_date=row.transaction_date,
                origin=row.origin,
                product_id=row.product_id,
                quantity_delta=row.quantity_delta,
                unit_price=row.unit_price,
                trade_line_id=row.trade_line_id,
            )
            for row in self.session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.transaction_date > as_of)
                .order_by(LedgerEntry.seq.desc())
            ).scalars()
        ]
        sale_line_ids = {
            e.trade_line_id
            for e in entries
            if e.origin == LedgerOrigin.SALE.value and e.trade_line_id is not None
        }
        references = PriceReferences(
            latest_purchase_price=self.latest_purchase_prices(),
            manual_price=self.manual_prices(),
            matched=self.matched_costs(sale_line_ids),
        )
        return replay_valuation(
            as_of=as_of,
            live_value=live_value,
            entries=entries,
            references=references,
        )

    def latest_purchase_prices(self) -> dict[UUID, Decimal]:
        """Most recent purchase lot price per product, any lot status."""
        rows = self.session.execute(
            select(Lot.product_id, Lot.unit_price)
            .join(TradeLine, Lot.trade_line_id == TradeLine.id)
            .join(Trade, TradeLine.trade_id == Trade.id)
            .where(Trade.trade_type == TradeType.PURCHASE.value)
            .order_by(Lot.purchase_date.desc(), Lot.display_order.desc())
        ).all()
        prices: dict[UUID, Decimal] = {}
        for product_id, unit_price in rows:
            prices.setdefault(product_id, unit_price)
        return prices

    def manual_prices(self) -> dict[UUID, Decimal]:
        rows = self.session.execute(
            select(AggregateRow.product_id, AggregateRow.manual_price).where(
                AggregateRow.manual_price.is_not(None)
            )
        ).all()
        return {product_id: price for product_id, price in rows}

    def matched_costs(self, sale_line_ids: set[UUID]) -> dict[UUID, MatchedCost]:
        if not sale_line_ids:
            return {}
        rows = self.session.execute(
            select(Match.sale_line_id, Match.quantity, Match.lot_unit_price).where(
                Match.sale_line_id.in_(list(sale_line_ids))
            )
        ).all()
        totals: dict[UUID, tuple[Decimal, Decimal]] = {}
        for line_id, quantity, price in rows:
            qty, cost = totals.get(line_id, (_ZERO, _ZERO))
            totals[line_id] = (qty + quantity, cost + quantity * price)
        return {
            line_id: MatchedCost(quantity=qty, cost=cost)
            for line_id, (qty, cost) in totals.items()
        }
