"""
MatchEngine -- attribution of sale quantities to purchase lots.

Responsibility:
    Creates Match rows linking a SALE trade line to lots (manual picks or a
    FIFO default), draws the lots down, and cancels matches by restoring
    the lot.

Architecture position:
    Kernel > Services.  Uses LotStore for every lot movement and the pure
    FIFO planner in produce_engines.matching for automatic allocation.

Invariants enforced:
    - Per pick, quantity <= the sale line's unmatched remainder and
      quantity <= the lot's capacity, where lot capacity is
      min(remaining_quantity, original_quantity - already matched).  The
      second bound keeps sum(matches over a lot) <= original_quantity even
      after positive adjustments.
    - The lot price is copied onto the match; later lot price edits do not
      change historical cost.
    - Lots are row-locked before capacity is read.

Failure modes:
    - OverMatchError (side "sale_line" or "lot"), LotNotAvailableError,
      ProductMismatchError, NotASaleLineError, TradeLineNotFoundError,
      MatchNotFoundError, InvalidQuantityError.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from produce_engines.matching import LotCandidate, plan_fifo
from produce_kernel.domain.clock import Clock
from produce_kernel.exceptions import (
    InvalidQuantityError,
    LotNotAvailableError,
    MatchNotFoundError,
    NotASaleLineError,
    OverMatchError,
    ProductMismatchError,
    TradeLineNotFoundError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.models.match import Match
from produce_kernel.models.trade import TradeLine, TradeType
from produce_kernel.services.base import BaseService
from produce_kernel.services.lot_store import LotStore

logger = get_logger("services.match_engine")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class MatchPick:
    """Caller-selected lot and quantity."""

    lot_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class CancelledMatch:
    match_id: UUID
    sale_line_id: UUID
    lot_id: UUID
    quantity: Decimal


class MatchEngine(BaseService):
    """
    Sale-to-lot matching.

    Contract:
        ``match`` validates every pick before creating its Match and
        reducing its lot.  The picks of one call share the caller's unit of
        work; a failure on a later pick leaves earlier picks to be rolled
        back by the caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        lots: LotStore | None = None,
    ):
        super().__init__(session, clock)
        self.lots = lots or LotStore(session, self.clock)

    def get_sale_line(self, sale_line_id: UUID) -> TradeLine:
        line = self.session.execute(
            select(TradeLine).where(TradeLine.id == sale_line_id).with_for_update()
        ).scalar_one_or_none()
        if line is None:
            raise TradeLineNotFoundError(str(sale_line_id))
        if line.trade_type != TradeType.SALE:
            raise NotASaleLineError(str(line.id), line.trade.trade_type)
        return line

    def lot_capacity(self, lot: Lot) -> Decimal:
        by_original = lot.original_quantity - self.lots.matched_quantity(lot.id)
        return max(min(lot.remaining_quantity, by_original), _ZERO)

    def match(self, sale_line_id: UUID, picks: Sequence[MatchPick]) -> list[Match]:
        """Create one Match per pick."""
        line = self.get_sale_line(sale_line_id)
        created: list[Match] = []

        for pick in picks:
            if pick.quantity <= 0:
                raise InvalidQuantityError(
                    "quantity", pick.quantity, "match quantity must be positive"
                )

            unmatched = line.unmatched_quantity
            if pick.quantity > unmatched:
                raise OverMatchError("sale_line", str(line.id), pick.quantity, unmatched)

            lot = self.lots.get_lot(pick.lot_id)
            if lot.product_id != line.product_id:
                raise ProductMismatchError(
                    str(lot.id), str(lot.product_id), str(line.product_id)
                )
            if not lot.is_available:
                raise LotNotAvailableError(str(lot.id), lot.status)
            capacity = self.lot_capacity(lot)
            if pick.quantity > capacity:
                raise OverMatchError("lot", str(lot.id), pick.quantity, capacity)

            match = Match(
                sale_line_id=line.id,
                lot_id=lot.id,
                quantity=pick.quantity,
                lot_unit_price=lot.unit_price,
                matched_at=self.clock.now(),
                matched_date=line.trade.trade_date,
            )
            self.session.add(match)
            line.matches.append(match)
            self.lots.reduce_lot(lot.id, pick.quantity)
            created.append(match)

            logger.info(
                "match_created",
                extra={
                    "match_id": str(match.id),
                    "sale_line_id": str(line.id),
                    "lot_id": str(lot.id),
                    "quantity": str(pick.quantity),
                    "lot_unit_price": str(lot.unit_price),
                },
            )

        self.session.flush()
        return created

    def auto_match(self, sale_line_id: UUID) -> list[Match]:
        """
        Match the line's unmatched remainder FIFO.

        Candidates are AVAILABLE lots of the same product (and warehouse,
        when the sale names one).  A shortfall is left unmatched.
        """
        line = self.get_sale_line(sale_line_id)
        remainder = line.unmatched_quantity
        if remainder <= 0:
            return []

        stmt = select(Lot).where(
            Lot.product_id == line.product_id,
            Lot.status == LotStatus.AVAILABLE.value,
        )
        warehouse_id = line.trade.warehouse_id
        if warehouse_id is not None:
            stmt = stmt.where(Lot.warehouse_id == warehouse_id)
        lots = self.session.execute(stmt).scalars().all()

        candidates = [
            LotCandidate(
                lot_id=lot.id,
                purchase_date=lot.purchase_date,
                display_order=lot.display_order,
                remaining=self.lot_capacity(lot),
            )
            for lot in lots
        ]
        plan = plan_fifo(quantity=remainder, candidates=candidates)
        if not plan.is_complete:
            logger.warning(
                "auto_match_shortfall",
                extra={
                    "sale_line_id": str(line.id),
                    "requested": str(remainder),
                    "shortfall": str(plan.shortfall),
                },
            )
        return self.match(
            line.id,
            [MatchPick(a.lot_id, a.quantity) for a in plan.allocations],
        )

    def cancel_match(self, match_id: UUID) -> CancelledMatch:
        """Delete a match and give its quantity back to the lot."""
        match = self.session.get(Match, match_id, with_for_update=True)
        if match is None:
            raise MatchNotFoundError(str(match_id))
        return self._release(match)

    def release_line(self, line: TradeLine) -> list[CancelledMatch]:
        """Cancel every match of a sale line."""
        return [self._release(match) for match in list(line.matches)]

    def _release(self, match: Match) -> CancelledMatch:
        result = CancelledMatch(
            match_id=match.id,
            sale_line_id=match.sale_line_id,
            lot_id=match.lot_id,
            quantity=match.quantity,
        )
        self.lots.restore_lot(match.lot_id, match.quantity)
        sale_line, lot = match.sale_line, match.lot
        self.session.delete(match)
        self.session.flush()
        self.session.expire(sale_line, ["matches"])
        self.session.expire(lot, ["matches"])

        logger.info(
            "match_cancelled",
            extra={
                "match_id": str(result.match_id),
                "sale_line_id": str(result.sale_line_id),
                "lot_id": str(result.lot_id),
                "quantity": str(result.quantity),
            },
        )
        return result
