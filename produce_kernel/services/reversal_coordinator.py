"""
ReversalCoordinator -- apply, re-apply and reverse trade line effects.

Responsibility:
    Every inventory effect of a trade line flows through here: the initial
    apply when a line is recorded, the reverse-old/apply-new pair when a
    line is edited, and the reverse-delete when a line is removed.  Each
    path moves the aggregate cache and appends the matching ledger entry.

Architecture position:
    Kernel > Services.  Composes LotStore, MatchEngine, AggregateCache and
    LedgerRecorder.  Called by TradeRecorder and the facade.

Invariants enforced:
    - Line effect: SALE lines move -|quantity| and -weight; PURCHASE and
      PRODUCTION lines move +|quantity| and +weight.  A purchase return
      (negative PURCHASE line) moves -|quantity| at its parent lot's price
      and draws the parent lot down by the same amount.
    - Edit = reverse the old effect, then apply the new one.  An edit to
      identical values nets to zero on the aggregate and the lot.
    - Matches are never rewritten by an edit.  A sale shrunk below its
      matched quantity is flagged (``over_matched_quantity``), not resolved.
    - Deleting a purchase/production line whose lot is matched, adjusted,
      under an open audit or drawn down raises LotInUseError before any
      write.
    - Deleting a sale line restores every matched lot and drops the matches.
      Deleting a return gives its quantity back to the parent lot.
    - The aggregate cache may go negative.  Only with
      ``block_negative_sales`` does a sale (or a sale edit that grows it)
      raise InsufficientStockError against the aggregate.
    - Every path runs inside the caller's unit of work; partial application
      is rolled back by the caller.

Failure modes:
    - TradeLineNotFoundError, InvalidTradeLineError, LotInUseError,
      InsufficientStockError, OverMatchError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock
from produce_kernel.exceptions import (
    InvalidTradeLineError,
    LotInUseError,
    ProductNotFoundError,
    TradeLineNotFoundError,
    TradeNotFoundError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.adjustment import AdjustmentEntry, AdjustmentKind
from produce_kernel.models.ledger_entry import LedgerEntry, LedgerOrigin, LedgerPhase
from produce_kernel.models.lot import Lot
from produce_kernel.models.product import Product
from produce_kernel.models.trade import Trade, TradeLine, TradeType
from produce_kernel.services.adjustment_service import AdjustmentRequest, AdjustmentService
from produce_kernel.services.aggregate_cache import AggregateCache, AggregateChange
from produce_kernel.services.base import BaseService
from produce_kernel.services.ledger_recorder import LedgerEntryDraft, LedgerRecorder
from produce_kernel.services.lot_store import LotStore
from produce_kernel.services.match_engine import CancelledMatch, MatchEngine

logger = get_logger("services.reversal_coordinator")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LineEffect:
    """Signed inventory effect of one trade line."""

    product_id: UUID
    quantity: Decimal
    weight: Decimal
    unit_cost: Decimal
    unit_price: Decimal

    def inverse(self) -> "LineEffect":
        return LineEffect(
            product_id=self.product_id,
            quantity=-self.quantity,
            weight=-self.weight,
            unit_cost=self.unit_cost,
            unit_price=self.unit_price,
        )


@dataclass(frozen=True)
class LineChanges:
    """Fields of a line edit; None leaves the field unchanged."""

    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    total_weight: Decimal | None = None
    product_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LineApplication:
    effect: LineEffect
    change: AggregateChange
    entry: LedgerEntry


@dataclass(frozen=True)
class LineUpdate:
    trade_line_id: UUID
    reversed: LineApplication
    applied: LineApplication
    over_matched_quantity: Decimal = _ZERO

    @property
    def is_over_matched(self) -> bool:
        return self.over_matched_quantity > 0


@dataclass(frozen=True)
class LineDeletion:
    trade_line_id: UUID
    reversed: LineApplication
    deleted_lot_id: UUID | None = None
    released_matches: tuple[CancelledMatch, ...] = field(default_factory=tuple)


class ReversalCoordinator(BaseService):
    """
    Transactional handler for trade line effects.

    Contract:
        The caller owns the transaction.  Each public method leaves the
        aggregate cache, the lots and the ledger consistent with each other
        when it returns, or raises and leaves rollback to the caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        lots: LotStore | None = None,
        aggregate: AggregateCache | None = None,
        ledger: LedgerRecorder | None = None,
        matches: MatchEngine | None = None,
        adjustments: AdjustmentService | None = None,
        block_negative_sales: bool = False,
    ):
        super().__init__(session, clock)
        self.block_negative_sales = block_negative_sales
        self.lots = lots or LotStore(session, self.clock)
        self.aggregate = aggregate or AggregateCache(session, self.clock)
        self.ledger = ledger or LedgerRecorder(session, self.clock)
        self.matches = matches or MatchEngine(session, self.clock, lots=self.lots)
        self.adjustments = adjustments or AdjustmentService(
            session,
            self.clock,
            lots=self.lots,
            aggregate=self.aggregate,
            ledger=self.ledger,
        )

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def get_line(self, trade_line_id: UUID) -> TradeLine:
        line = self.session.execute(
            select(TradeLine).where(TradeLine.id == trade_line_id).with_for_update()
        ).scalar_one_or_none()
        if line is None:
            raise TradeLineNotFoundError(str(trade_line_id))
        return line

    def effect_of(self, line: TradeLine) -> LineEffect:
        """Signed effect of a line as it currently stands."""
        if line.trade_type == TradeType.SALE:
            quantity = line.abs_quantity
            return LineEffect(
                product_id=line.product_id,
                quantity=-quantity,
                weight=-line.effective_weight,
                unit_cost=self._sale_unit_cost(line, quantity),
                unit_price=line.unit_price,
            )
        if line.is_return:
            cost = self.return_lot(line).unit_price
            return LineEffect(
                product_id=line.product_id,
                quantity=-line.abs_quantity,
                weight=-line.effective_weight,
                unit_cost=cost,
                unit_price=cost,
            )
        return LineEffect(
            product_id=line.product_id,
            quantity=line.abs_quantity,
            weight=line.effective_weight,
            unit_cost=line.unit_price,
            unit_price=line.unit_price,
        )

    def return_lot(self, line: TradeLine) -> Lot:
        """Lot a purchase return draws against."""
        parent = line.parent_line
        if parent is None or parent.lot is None:
            raise InvalidTradeLineError(
                "parent_line_id", str(line.parent_line_id), "return has no parent purchase lot"
            )
        return parent.lot

    def _sale_unit_cost(self, line: TradeLine, quantity: Decimal) -> Decimal:
        """Matched cost for the matched part, aggregate price for the rest."""
        row = self.aggregate.get_row(line.product_id)
        fallback = row.purchase_price if row is not None else _ZERO
        if quantity <= 0:
            return fallback
        matched_price = line.matched_unit_price
        if matched_price is None:
            return fallback
        matched = min(line.matched_quantity, quantity)
        cost = matched * matched_price + (quantity - matched) * fallback
        return cost / quantity

    def _origin(self, line: TradeLine) -> LedgerOrigin:
        return LedgerOrigin(line.trade_type.value)

    def _post(
        self,
        line: TradeLine,
        effect: LineEffect,
        phase: LedgerPhase,
        *,
        price_override: Decimal | None = None,
        allow_negative: bool = True,
        annotation: str | None = None,
    ) -> LineApplication:
        change = self.aggregate.apply_delta(
            effect.product_id,
            effect.quantity,
            effect.weight,
            price_override=price_override,
            unit_cost=effect.unit_cost,
            allow_negative=allow_negative,
        )
        entry = self.ledger.append(
            LedgerEntryDraft(
                transaction_date=line.trade.trade_date,
                origin=self._origin(line),
                phase=phase,
                product_id=effect.product_id,
                quantity_delta=effect.quantity,
                weight_delta=effect.weight,
                before_quantity=change.before_quantity,
                after_quantity=change.after_quantity,
                unit_price=effect.unit_price,
                trade_line_id=line.id,
                lot_id=self._lot_id(line),
                reference=line.trade.trade_number,
                annotation=annotation,
            )
        )
        return LineApplication(effect=effect, change=change, entry=entry)

    def _lot_id(self, line: TradeLine) -> UUID | None:
        if line.lot is not None:
            return line.lot.id
        if line.is_return:
            return self.return_lot(line).id
        return None

    def _sale_allow_negative(self, line: TradeLine, grows: bool = True) -> bool:
        return not (self.block_negative_sales and line.trade_type == TradeType.SALE and grows)

    def _price_override(self, line: TradeLine) -> Decimal | None:
        """Purchase price moves only when the line's lot is the newest lot."""
        if not line.trade_type.creates_lots or line.lot is None:
            return None
        if self.lots.latest_lot_id(line.product_id) != line.lot.id:
            return None
        return line.unit_price

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply_line(self, line: TradeLine) -> LineApplication:
        """
        Apply a freshly recorded line.

        A return draws its parent lot down first, so an over-return fails
        with InsufficientStockError before the ledger write.
        """
        if line.is_return:
            self.lots.reduce_lot(self.return_lot(line).id, line.abs_quantity, line.effective_weight)
        effect = self.effect_of(line)
        application = self._post(
            line,
            effect,
            LedgerPhase.APPLY,
            price_override=self._price_override(line),
            allow_negative=self._sale_allow_negative(line),
        )
        logger.info(
            "trade_line_applied",
            extra={
                "trade_line_id": str(line.id),
                "trade_type": line.trade_type.value,
                "quantity_delta": str(effect.quantity),
                "after_quantity": str(application.change.after_quantity),
            },
        )
        return application

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_line(self, trade_line_id: UUID, changes: LineChanges) -> LineUpdate:
        """
        Edit a line: reverse-old, mutate, apply-new.

        Purchase/production lots follow the edit before any ledger write,
        so lot failures abort early.
        """
        line = self.get_line(trade_line_id)
        trade_type = line.trade_type
        self._validate_changes(line, changes)

        old_effect = self.effect_of(line)
        old_quantity = line.abs_quantity
        old_weight = line.effective_weight

        if changes.quantity is not None:
            line.quantity = changes.quantity
        if changes.unit_price is not None:
            line.unit_price = changes.unit_price
        if changes.total_weight is not None:
            line.total_weight = changes.total_weight
        if changes.product_id is not None and changes.product_id != line.product_id:
            line.product_id = changes.product_id
            line.product = self.session.get(Product, changes.product_id)
        if changes.notes is not None:
            line.notes = changes.notes
        self.session.flush()

        if trade_type.creates_lots and line.lot is not None:
            self.lots.reshape_lot(
                line.lot.id,
                quantity_diff=line.abs_quantity - old_quantity,
                weight_diff=line.effective_weight - old_weight,
                unit_price=line.unit_price,
                product_id=line.product_id,
                purchase_date=line.trade.trade_date,
            )
        elif line.is_return:
            parent_lot = self.return_lot(line)
            self.lots.restore_lot(parent_lot.id, old_quantity, old_weight)
            self.lots.reduce_lot(parent_lot.id, line.abs_quantity, line.effective_weight)

        reversed_ = self._post(line, old_effect.inverse(), LedgerPhase.REVERSE_OLD)
        new_effect = self.effect_of(line)
        applied = self._post(
            line,
            new_effect,
            LedgerPhase.APPLY_NEW,
            price_override=self._price_override(line),
            allow_negative=self._sale_allow_negative(line, line.abs_quantity > old_quantity),
        )

        over_matched = _ZERO
        if trade_type == TradeType.SALE:
            over_matched = max(line.matched_quantity - line.abs_quantity, _ZERO)
            if over_matched > 0:
                logger.warning(
                    "sale_line_overmatched",
                    extra={
                        "trade_line_id": str(line.id),
                        "matched_quantity": str(line.matched_quantity),
                        "line_quantity": str(line.abs_quantity),
                        "over_matched_quantity": str(over_matched),
                    },
                )

        logger.info(
            "trade_line_reversed",
            extra={
                "trade_line_id": str(line.id),
                "trade_type": trade_type.value,
                "old_quantity_delta": str(old_effect.quantity),
                "new_quantity_delta": str(new_effect.quantity),
                "reverse_seq": reversed_.entry.seq,
                "apply_seq": applied.entry.seq,
            },
        )
        return LineUpdate(
            trade_line_id=line.id,
            reversed=reversed_,
            applied=applied,
            over_matched_quantity=over_matched,
        )

    def _validate_changes(self, line: TradeLine, changes: LineChanges) -> None:
        if changes.quantity is not None:
            if line.is_return and changes.quantity >= 0:
                raise InvalidTradeLineError("quantity", changes.quantity, "a return stays negative")
            if not line.is_return and changes.quantity <= 0:
                raise InvalidTradeLineError("quantity", changes.quantity, "must be positive")
        if (
            line.is_return
            and changes.product_id is not None
            and changes.product_id != line.product_id
        ):
            raise InvalidTradeLineError(
                "product_id", str(changes.product_id), "a return keeps its parent line's product"
            )
        if changes.unit_price is not None and changes.unit_price < 0:
            raise InvalidTradeLineError("unit_price", changes.unit_price, "cannot be negative")
        if changes.total_weight is not None and changes.total_weight < 0:
            raise InvalidTradeLineError("total_weight", changes.total_weight, "cannot be negative")
        if changes.product_id is not None and changes.product_id != line.product_id:
            if self.session.get(Product, changes.product_id) is None:
                raise ProductNotFoundError(str(changes.product_id))
            if line.trade_type == TradeType.SALE and line.matches:
                raise InvalidTradeLineError(
                    "product_id", str(changes.product_id), "sale line has matches"
                )
            if line.lot is not None and self.lots.has_matches(line.lot.id):
                raise LotInUseError(str(line.lot.id), "product cannot change on a matched lot")

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_line(self, trade_line_id: UUID) -> LineDeletion:
        """Reverse a line's effect and remove it (with its lot or matches)."""
        line = self.get_line(trade_line_id)
        trade = line.trade
        trade_type = line.trade_type
        lot = line.lot

        if trade_type.creates_lots and lot is not None:
            reason = self.lots.in_use_reason(lot)
            if reason is not None:
                raise LotInUseError(str(lot.id), reason)

        effect = self.effect_of(line)
        reversed_ = self._post(line, effect.inverse(), LedgerPhase.REVERSE_DELETE)

        released: tuple[CancelledMatch, ...] = ()
        deleted_lot_id = None
        if trade_type == TradeType.SALE:
            released = tuple(self.matches.release_line(line))
        elif line.is_return:
            self.lots.restore_lot(
                self.return_lot(line).id, line.abs_quantity, line.effective_weight
            )
        elif lot is not None:
            deleted_lot_id = lot.id
            self.lots.delete_lot(lot.id)
            self.session.expire(line, ["lot"])

        self.session.delete(line)
        self.session.flush()
        self.session.expire(trade, ["lines"])

        logger.info(
            "trade_line_deleted",
            extra={
                "trade_line_id": str(trade_line_id),
                "trade_type": trade_type.value,
                "quantity_delta": str(reversed_.effect.quantity),
                "released_matches": len(released),
                "deleted_lot_id": str(deleted_lot_id) if deleted_lot_id else None,
            },
        )
        return LineDeletion(
            trade_line_id=trade_line_id,
            reversed=reversed_,
            deleted_lot_id=deleted_lot_id,
            released_matches=released,
        )

    def reverse_production_consumption(self, trade: Trade) -> list[AdjustmentEntry]:
        """Give back every ingredient quantity a production trade consumed."""
        consumed = self.session.execute(
            select(AdjustmentEntry)
            .where(
                AdjustmentEntry.trade_id == trade.id,
                AdjustmentEntry.kind == AdjustmentKind.PRODUCTION.value,
            )
            .order_by(AdjustmentEntry.adjusted_at)
        ).scalars().all()
        reverted_ids = set(
            self.session.execute(
                select(AdjustmentEntry.reverses_id).where(
                    AdjustmentEntry.trade_id == trade.id,
                    AdjustmentEntry.kind == AdjustmentKind.PRODUCTION_REVERT.value,
                )
            ).scalars()
        )

        reverts = []
        for adjustment in consumed:
            if adjustment.id in reverted_ids:
                continue
            reverts.append(
                self.adjustments.adjust(
                    AdjustmentRequest(
                        lot_id=adjustment.lot_id,
                        quantity_change=-adjustment.quantity_change,
                        kind=AdjustmentKind.PRODUCTION_REVERT,
                        reason=f"reverse production {trade.trade_number or trade.id}",
                        transaction_date=trade.trade_date,
                        reverses_id=adjustment.id,
                        trade_id=trade.id,
                    )
                )
            )
        return reverts

    def delete_trade(self, trade_id: UUID) -> list[LineDeletion]:
        """
        Reverse every line of a trade, undo production consumption, drop it.

        Lines go last to first, so a return is removed before the purchase
        line it draws against.
        """
        trade = self.session.get(Trade, trade_id, with_for_update=True)
        if trade is None:
            raise TradeNotFoundError(str(trade_id))

        line_ids = [line.id for line in reversed(trade.lines)]
        deletions = [self.delete_line(line_id) for line_id in line_ids]
        if trade.type == TradeType.PRODUCTION:
            self.reverse_production_consumption(trade)

        self.session.delete(trade)
        self.session.flush()
        logger.info(
            "trade_deleted",
            extra={
                "trade_id": str(trade_id),
                "trade_type": trade.trade_type,
                "line_count": len(deletions),
            },
        )
        return deletions
