"""
TradeRecorder -- recording of purchase, sale and production trades.

Responsibility:
    Creates a Trade and its lines, a lot per purchase/production line, the
    matches of sale lines, and hands each line to the ReversalCoordinator
    for its aggregate delta and "apply" ledger entry.  Production also
    consumes ingredient lots through AdjustmentService and costs the output
    lot from them.

Architecture position:
    Kernel > Services.  Composes ReversalCoordinator (and through it
    LotStore, MatchEngine, AggregateCache, LedgerRecorder).

Invariants enforced:
    - Line quantity is positive and stored positive; direction comes from
      the trade type.  The one exception is a purchase return: a negative
      PURCHASE line naming its parent purchase line, which draws the
      parent lot down instead of creating a lot.
    - Sale lines are matched before their aggregate delta, so the stored
      inventory value moves by matched cost where it is known.
    - Sales may take the product aggregate below zero unless the
      coordinator blocks negative sales, in which case they raise
      InsufficientStockError.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from produce_engines.costing import IngredientUse, ProductionCost, production_cost
from produce_kernel.db.types import STORAGE_DECIMAL_PLACES, round_money
from produce_kernel.domain.clock import Clock
from produce_kernel.exceptions import (
    InvalidTradeLineError,
    ProductNotFoundError,
    TradeNotFoundError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.adjustment import AdjustmentKind
from produce_kernel.models.lot import Lot
from produce_kernel.models.match import Match
from produce_kernel.models.product import Product
from produce_kernel.models.trade import Trade, TradeLine, TradeType
from produce_kernel.services.adjustment_service import AdjustmentRequest
from produce_kernel.services.base import BaseService
from produce_kernel.services.match_engine import MatchPick
from produce_kernel.services.reversal_coordinator import LineApplication, ReversalCoordinator

logger = get_logger("services.trade_recorder")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class TradeDraft:
    trade_type: TradeType
    trade_date: date
    trade_number: str | None = None
    company_id: str | None = None
    warehouse_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LineDraft:
    """
    One line to record.

    ``picks`` and ``auto_match`` apply to SALE lines only;
    ``parent_line_id`` marks a negative PURCHASE line as a return.
    """

    product_id: UUID
    quantity: Decimal
    unit_price: Decimal = _ZERO
    total_weight: Decimal | None = None
    notes: str | None = None
    picks: tuple[MatchPick, ...] = field(default_factory=tuple)
    auto_match: bool = False
    parent_line_id: UUID | None = None


@dataclass(frozen=True)
class IngredientDraft:
    lot_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class RecordedLine:
    line: TradeLine
    application: LineApplication
    lot: Lot | None = None
    matches: tuple[Match, ...] = ()


@dataclass(frozen=True)
class RecordedTrade:
    trade: Trade
    lines: tuple[RecordedLine, ...]
    production_cost: ProductionCost | None = None


class TradeRecorder(BaseService):
    """Creates trades and applies their lines."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        coordinator: ReversalCoordinator | None = None,
    ):
        super().__init__(session, clock)
        self.coordinator = coordinator or ReversalCoordinator(session, self.clock)

    def record_trade(
        self,
        draft: TradeDraft,
        lines: Sequence[LineDraft],
        *,
        auto_match_default: bool = False,
    ) -> RecordedTrade:
        """
        Record a PURCHASE or SALE trade.

        Args:
            draft: Trade header.
            lines: Lines in order; seq_no follows list position.
            auto_match_default: FIFO-match sale lines that carry no picks.
        """
        if draft.trade_type == TradeType.PRODUCTION:
            raise InvalidTradeLineError(
                "trade_type", draft.trade_type.value, "use record_production"
            )
        trade = self._create_trade(draft)
        recorded = []
        for seq_no, line_draft in enumerate(lines, start=1):
            recorded.append(self._record_line(trade, seq_no, line_draft, auto_match_default))

        logger.info(
            "trade_recorded",
            extra={
                "trade_id": str(trade.id),
                "trade_type": draft.trade_type.value,
                "line_count": len(recorded),
            },
        )
        return RecordedTrade(trade=trade, lines=tuple(recorded))

    def record_production(
        self,
        draft: TradeDraft,
        ingredients: Sequence[IngredientDraft],
        output: LineDraft,
        *,
        additional_cost: Decimal = _ZERO,
    ) -> RecordedTrade:
        """
        Consume ingredient lots and create one costed output lot.

        Output unit price = (sum of ingredient price * used + additional
        cost) / output quantity.
        """
        self._validate_line(output)
        lots = self.coordinator.lots
        uses = []
        for ingredient in ingredients:
            if ingredient.quantity <= 0:
                raise InvalidTradeLineError(
                    "ingredient_quantity", ingredient.quantity, "must be positive"
                )
            lot = lots.get_lot(ingredient.lot_id)
            uses.append(IngredientUse(quantity=ingredient.quantity, unit_price=lot.unit_price))
        cost = production_cost(
            ingredients=uses,
            output_quantity=abs(output.quantity),
            additional_cost=additional_cost,
        )

        trade = self._create_trade(
            TradeDraft(
                trade_type=TradeType.PRODUCTION,
                trade_date=draft.trade_date,
                trade_number=draft.trade_number,
                company_id=draft.company_id,
                warehouse_id=draft.warehouse_id,
                notes=draft.notes,
            )
        )
        for ingredient in ingredients:
            self.coordinator.adjustments.adjust(
                AdjustmentRequest(
                    lot_id=ingredient.lot_id,
                    quantity_change=-ingredient.quantity,
                    kind=AdjustmentKind.PRODUCTION,
                    reason=f"consumed by production {trade.trade_number or trade.id}",
                    transaction_date=trade.trade_date,
                    trade_id=trade.id,
                )
            )

        costed_output = LineDraft(
            product_id=output.product_id,
            quantity=output.quantity,
            unit_price=round_money(cost.unit_cost, STORAGE_DECIMAL_PLACES),
            total_weight=output.total_weight,
            notes=output.notes,
        )
        recorded = self._record_line(trade, 1, costed_output, False)

        logger.info(
            "production_recorded",
            extra={
                "trade_id": str(trade.id),
                "ingredient_count": len(uses),
                "total_cost": str(cost.total_cost),
                "unit_cost": str(costed_output.unit_price),
            },
        )
        return RecordedTrade(trade=trade, lines=(recorded,), production_cost=cost)

    def add_line(self, trade_id: UUID, line_draft: LineDraft) -> RecordedLine:
        """Append and apply one more line on an existing trade."""
        trade = self.session.get(Trade, trade_id)
        if trade is None:
            raise TradeNotFoundError(str(trade_id))
        seq_no = max((line.seq_no for line in trade.lines), default=0) + 1
        return self._record_line(trade, seq_no, line_draft, False)

    def _create_trade(self, draft: TradeDraft) -> Trade:
        trade = Trade(
            trade_number=draft.trade_number,
            trade_type=draft.trade_type.value,
            trade_date=draft.trade_date,
            company_id=draft.company_id,
            warehouse_id=draft.warehouse_id,
            notes=draft.notes,
        )
        self.session.add(trade)
        self.session.flush()
        return trade

    def _validate_line(self, line_draft: LineDraft, is_return: bool = False) -> Product:
        if is_return:
            if line_draft.quantity >= 0:
                raise InvalidTradeLineError(
                    "quantity", line_draft.quantity, "return quantity must be negative"
                )
        elif line_draft.quantity <= 0:
            raise InvalidTradeLineError("quantity", line_draft.quantity, "must be positive")
        if line_draft.unit_price < 0:
            raise InvalidTradeLineError("unit_price", line_draft.unit_price, "cannot be negative")
        if line_draft.total_weight is not None and line_draft.total_weight < 0:
            raise InvalidTradeLineError(
                "total_weight", line_draft.total_weight, "cannot be negative"
            )
        product = self.session.get(Product, line_draft.product_id)
        if product is None:
            raise ProductNotFoundError(str(line_draft.product_id))
        return product

    def _return_parent(self, trade: Trade, line_draft: LineDraft) -> TradeLine | None:
        """Parent purchase line of a return, or None for an ordinary line."""
        if line_draft.parent_line_id is None:
            return None
        if trade.type != TradeType.PURCHASE:
            raise InvalidTradeLineError(
                "parent_line_id", str(line_draft.parent_line_id), "only purchase lines can be returns"
            )
        parent = self.session.get(TradeLine, line_draft.parent_line_id)
        if parent is None:
            raise InvalidTradeLineError(
                "parent_line_id", str(line_draft.parent_line_id), "parent line not found"
            )
        if parent.trade_type != TradeType.PURCHASE or parent.is_return or parent.lot is None:
            raise InvalidTradeLineError(
                "parent_line_id", str(parent.id), "parent must be a purchase line with a lot"
            )
        if parent.product_id != line_draft.product_id:
            raise InvalidTradeLineError(
                "product_id", str(line_draft.product_id), "return product differs from parent line"
            )
        return parent

    def _line_price(self, line_draft: LineDraft, parent: TradeLine | None) -> Decimal:
        # an unpriced return is refunded at the parent lot cost
        if parent is not None and line_draft.unit_price == 0:
            return parent.lot.unit_price
        return line_draft.unit_price

    def _record_line(
        self,
        trade: Trade,
        seq_no: int,
        line_draft: LineDraft,
        auto_match_default: bool,
    ) -> RecordedLine:
        parent = self._return_parent(trade, line_draft)
        product = self._validate_line(line_draft, is_return=parent is not None)
        line = TradeLine(
            trade=trade,
            product=product,
            seq_no=seq_no,
            quantity=line_draft.quantity,
            unit_price=self._line_price(line_draft, parent),
            total_weight=line_draft.total_weight,
            notes=line_draft.notes,
            parent_line=parent,
        )
        self.session.add(line)
        self.session.flush()

        lot = None
        matches: tuple[Match, ...] = ()
        if parent is not None:
            logger.info(
                "purchase_return_recorded",
                extra={
                    "trade_line_id": str(line.id),
                    "parent_line_id": str(parent.id),
                    "quantity": str(line.quantity),
                },
            )
        elif trade.type.creates_lots:
            lot = self.coordinator.lots.create_lot(
                product_id=product.id,
                purchase_date=trade.trade_date,
                unit_price=line.unit_price,
                quantity=line.abs_quantity,
                weight=line.effective_weight,
                trade_line_id=line.id,
                warehouse_id=trade.warehouse_id,
                company_id=trade.company_id,
            )
            self.session.expire(line, ["lot"])
        elif trade.type == TradeType.SALE:
            engine = self.coordinator.matches
            if line_draft.picks:
                matches = tuple(engine.match(line.id, line_draft.picks))
            elif line_draft.auto_match or auto_match_default:
                matches = tuple(engine.auto_match(line.id))

        application = self.coordinator.apply_line(line)
        return RecordedLine(line=line, application=application, lot=lot, matches=matches)
