"""
produce_services.inventory_ledger_service
=========================================

Responsibility:
    The single entry point of the inventory cost ledger.  Composes the
    kernel services (TradeRecorder, ReversalCoordinator, MatchEngine,
    AdjustmentService, TransferService, AggregateCache, AuditReconciler,
    ClosingStore) and
    selectors (ValuationReconstructor, InventorySelector) and runs every
    external operation as one atomic unit of work.  This module is thin
    glue -- it contains no cost or quantity arithmetic of its own.

Architecture:
    Services layer.  Kernel services only flush; this facade owns the
    transaction boundary.  Every mutating operation runs inside a
    SAVEPOINT so a failure leaves no partial effect even when the caller
    owns the outer transaction (``auto_commit=False``).

Invariants enforced:
    - Atomicity: one operation = one SAVEPOINT.  A reversal pair, a match,
      a cancel, a finalize or a revert is never half-applied.
    - Transaction boundaries: with ``auto_commit=True`` every public
      mutating method commits on success and rolls back on failure.
    - Clock is injected; wall-clock time is never read directly.

Failure modes:
    - Kernel exceptions (``ProduceLedgerError`` subclasses) propagate after
      rollback.  ``describe_error`` turns them into typed results.
    - ``InvalidClosingRangeError`` -- ``close_period`` with start > end.

Audit relevance:
    Every operation logs ``<operation>_started`` and
    ``<operation>_completed`` (with ``duration_ms``) or
    ``<operation>_failed``, all under one correlation id bound through
    ``LogContext``.

Usage::

    service = InventoryLedgerService(session, clock)
    recorded = service.record_purchase(
        trade_date=date(2024, 3, 1),
        lines=[LineDraft(product_id=apple.id, quantity=Decimal("100"),
                         unit_price=Decimal("1000"))],
    )
"""

from __future__ import annotations

import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from produce_config.schema import LedgerSettings
from produce_engines.costing import PricePolicy, compute_closing
from produce_kernel.domain.clock import Clock, SystemClock
from produce_kernel.exceptions import InvalidClosingRangeError
from produce_kernel.logging_config import LogContext, get_logger
from produce_kernel.models.adjustment import AdjustmentEntry, AdjustmentKind
from produce_kernel.models.audit import AuditItem, AuditSession
from produce_kernel.models.closing import ClosingSnapshot
from produce_kernel.models.trade import TradeType
from produce_kernel.selectors.inventory_selector import (
    AggregateView,
    AuditItemView,
    InventorySelector,
    LedgerEntryView,
    LotView,
    SaleLineView,
)
from produce_kernel.selectors.valuation_reconstructor import (
    ValuationReconstructor,
    ValuationResult,
)
from produce_kernel.services.adjustment_service import AdjustmentRequest, AdjustmentService
from produce_kernel.services.aggregate_cache import AggregateCache, HardSyncResult
from produce_kernel.services.audit_reconciler import AuditReconciler, AuditTransition
from produce_kernel.services.closing_store import ClosingDetailDraft, ClosingStore
from produce_kernel.services.ledger_recorder import LedgerRecorder
from produce_kernel.services.lot_store import LotStore
from produce_kernel.services.match_engine import CancelledMatch, MatchEngine, MatchPick
from produce_kernel.services.reversal_coordinator import (
    LineChanges,
    LineDeletion,
    LineUpdate,
    ReversalCoordinator,
)
from produce_kernel.services.trade_recorder import (
    IngredientDraft,
    LineDraft,
    RecordedLine,
    RecordedTrade,
    TradeDraft,
    TradeRecorder,
)
from produce_kernel.services.transfer_service import TransferResult, TransferService
from produce_services._types import ClosingResult, MatchResult

logger = get_logger("services.inventory_ledger")


class InventoryLedgerService:
    """
    Facade over the inventory cost ledger.

    Contract:
        Each public mutating method either commits (``auto_commit=True``)
        or releases its SAVEPOINT into the caller's transaction, or rolls
        back its own effects and re-raises.  Read methods never write.

    Guarantees:
        - Quantities and money are ``Decimal`` end to end.
        - Lot, match, aggregate and ledger writes of one operation land
          together or not at all.

    Non-goals:
        - Does NOT authenticate or authorize callers; ``actor_id`` is
          recorded, not checked.
        - Does NOT manage product or warehouse reference data.

    Transaction boundary:
        ``auto_commit=True`` (default) commits after every operation.
        ``auto_commit=False`` leaves the outer transaction to the caller;
        the per-operation SAVEPOINT still guarantees atomicity.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        settings: LedgerSettings | None = None,
        auto_commit: bool = True,
        actor_id: str | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or LedgerSettings()
        self._auto_commit = auto_commit
        self._actor_id = actor_id

        self._lots = LotStore(session, self._clock)
        self._aggregate = AggregateCache(session, self._clock)
        self._ledger = LedgerRecorder(session, self._clock)
        self._matches = MatchEngine(session, self._clock, lots=self._lots)
        self._adjustments = AdjustmentService(
            session,
            self._clock,
            lots=self._lots,
            aggregate=self._aggregate,
            ledger=self._ledger,
        )
        self._coordinator = ReversalCoordinator(
            session,
            self._clock,
            lots=self._lots,
            aggregate=self._aggregate,
            ledger=self._ledger,
            matches=self._matches,
            adjustments=self._adjustments,
            block_negative_sales=self._settings.aggregate.block_negative_sales,
        )
        self._transfers = TransferService(
            session,
            self._clock,
            lots=self._lots,
            aggregate=self._aggregate,
            ledger=self._ledger,
        )
        self._trades = TradeRecorder(session, self._clock, coordinator=self._coordinator)
        self._audits = AuditReconciler(session, self._clock, adjustments=self._adjustments)
        self._closings = ClosingStore(session, self._clock)

        self._valuation = ValuationReconstructor(session, self._clock)
        self._inventory = InventorySelector(session, self._clock)

    # =========================================================================
    # Unit of work
    # =========================================================================

    @contextmanager
    def _operation(
        self,
        name: str,
        *,
        writes: bool = True,
        trade_id: UUID | None = None,
        audit_session_id: UUID | None = None,
        **fields: object,
    ) -> Generator[None, None, None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            operation=name,
            actor_id=self._actor_id,
            trade_id=trade_id,
            audit_session_id=audit_session_id,
        ):
            logger.info(
                f"{name}_started",
                extra={key: str(value) for key, value in fields.items()},
            )
            t0 = time.monotonic()
            try:
                if writes:
                    with self._session.begin_nested():
                        yield
                    if self._auto_commit:
                        self._session.commit()
                else:
                    yield
            except Exception as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if writes and self._auto_commit:
                    self._session.rollback()
                logger.error(
                    f"{name}_failed",
                    extra={
                        "duration_ms": duration_ms,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                    exc_info=True,
                )
                raise
            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(f"{name}_completed", extra={"duration_ms": duration_ms})

    # =========================================================================
    # Trades
    # =========================================================================

    def record_purchase(
        self,
        *,
        trade_date: date,
        lines: Sequence[LineDraft],
        trade_number: str | None = None,
        company_id: str | None = None,
        warehouse_id: str | None = None,
        notes: str | None = None,
    ) -> RecordedTrade:
        """
        Record a purchase: one lot, one aggregate bump and one IN entry per line.

        A line with a negative quantity and ``parent_line_id`` is a return
        to the supplier; it draws the parent lot down and writes an OUT
        entry instead.
        """
        draft = TradeDraft(
            trade_type=TradeType.PURCHASE,
            trade_date=trade_date,
            trade_number=trade_number,
            company_id=company_id,
            warehouse_id=warehouse_id,
            notes=notes,
        )
        with self._operation(
            "record_purchase", trade_date=trade_date, line_count=len(lines)
        ):
            result = self._trades.record_trade(draft, lines)
        return result

    def record_purchase_return(
        self,
        parent_line_id: UUID,
        quantity: Decimal,
        *,
        trade_date: date | None = None,
        unit_price: Decimal | None = None,
        trade_number: str | None = None,
        notes: str | None = None,
    ) -> RecordedLine:
        """
        Send ``quantity`` of a purchase line's lot back to the supplier.

        The return is its own PURCHASE trade with one negative line.
        Without ``unit_price`` it is refunded at the parent lot's price.

        Raises:
            InvalidTradeLineError: The parent is not a purchase line with a lot.
            InsufficientStockError: ``quantity`` exceeds the parent lot's remaining.
        """
        with self._operation(
            "record_purchase_return", parent_line_id=parent_line_id, quantity=quantity
        ):
            parent = self._coordinator.get_line(parent_line_id)
            draft = TradeDraft(
                trade_type=TradeType.PURCHASE,
                trade_date=trade_date or self._clock.today(),
                trade_number=trade_number,
                company_id=parent.trade.company_id,
                warehouse_id=parent.trade.warehouse_id,
                notes=notes,
            )
            line = LineDraft(
                product_id=parent.product_id,
                quantity=-abs(quantity),
                unit_price=unit_price if unit_price is not None else Decimal("0"),
                parent_line_id=parent.id,
            )
            result = self._trades.record_trade(draft, [line]).lines[0]
        return result

    def record_sale(
        self,
        *,
        trade_date: date,
        lines: Sequence[LineDraft],
        trade_number: str | None = None,
        company_id: str | None = None,
        warehouse_id: str | None = None,
        notes: str | None = None,
        auto_match: bool | None = None,
    ) -> RecordedTrade:
        """
        Record a sale.

        Lines with ``picks`` are matched to those lots.  Lines without
        picks are matched FIFO when ``auto_match`` is true, or when it is
        None and the ``matching.auto_match_sales`` setting is on.

        Raises:
            InsufficientStockError: A line would take the aggregate below 0
                and the ``aggregate.block_negative_sales`` setting is on.
            OverMatchError: A pick exceeds the line or the lot.
        """
        if auto_match is None:
            auto_match = self._settings.matching.auto_match_sales
        draft = TradeDraft(
            trade_type=TradeType.SALE,
            trade_date=trade_date,
            trade_number=trade_number,
            company_id=company_id,
            warehouse_id=warehouse_id,
            notes=notes,
        )
        with self._operation(
            "record_sale", trade_date=trade_date, line_count=len(lines)
        ):
            result = self._trades.record_trade(draft, lines, auto_match_default=auto_match)
        return result

    def record_production(
        self,
        *,
        trade_date: date,
        ingredients: Sequence[IngredientDraft],
        output: LineDraft,
        additional_cost: Decimal = Decimal("0"),
        trade_number: str | None = None,
        company_id: str | None = None,
        warehouse_id: str | None = None,
        notes: str | None = None,
    ) -> RecordedTrade:
        """Consume ingredient lots and record one costed output lot."""
        draft = TradeDraft(
            trade_type=TradeType.PRODUCTION,
            trade_date=trade_date,
            trade_number=trade_number,
            company_id=company_id,
            warehouse_id=warehouse_id,
            notes=notes,
        )
        with self._operation(
            "record_production",
            trade_date=trade_date,
            ingredient_count=len(ingredients),
        ):
            result = self._trades.record_production(
                draft, ingredients, output, additional_cost=additional_cost
            )
        return result

    def add_trade_line(self, trade_id: UUID, line: LineDraft) -> RecordedLine:
        with self._operation("add_trade_line", trade_id=trade_id):
            result = self._trades.add_line(trade_id, line)
        return result

    def update_trade_line(
        self,
        trade_line_id: UUID,
        *,
        quantity: Decimal | None = None,
        unit_price: Decimal | None = None,
        total_weight: Decimal | None = None,
        product_id: UUID | None = None,
        notes: str | None = None,
    ) -> LineUpdate:
        """
        Edit a line as reverse-old then apply-new.

        A sale shrunk below its matched quantity is reported through
        ``LineUpdate.over_matched_quantity``; its matches are left alone.
        """
        changes = LineChanges(
            quantity=quantity,
            unit_price=unit_price,
            total_weight=total_weight,
            product_id=product_id,
            notes=notes,
        )
        with self._operation("update_trade_line", trade_line_id=trade_line_id):
            result = self._coordinator.update_line(trade_line_id, changes)
        return result

    def delete_trade_line(self, trade_line_id: UUID) -> LineDeletion:
        """
        Reverse and remove one line.

        Raises:
            LotInUseError: The line's lot has been matched, adjusted,
                audited or drawn down.
        """
        with self._operation("delete_trade_line", trade_line_id=trade_line_id):
            result = self._coordinator.delete_line(trade_line_id)
        return result

    def delete_trade(self, trade_id: UUID) -> list[LineDeletion]:
        with self._operation("delete_trade", trade_id=trade_id):
            result = self._coordinator.delete_trade(trade_id)
        return result

    # =========================================================================
    # Matching
    # =========================================================================

    def match_sale(self, sale_line_id: UUID, picks: Sequence[MatchPick]) -> MatchResult:
        """Match a sale line against explicit lot picks."""
        with self._operation(
            "match_sale", sale_line_id=sale_line_id, pick_count=len(picks)
        ):
            matches = self._matches.match(sale_line_id, picks)
        return MatchResult(
            sale_line_id=sale_line_id,
            matches=tuple(matches),
            status=self._inventory.sale_line(sale_line_id),
        )

    def auto_match_sale(self, sale_line_id: UUID) -> MatchResult:
        """FIFO-match the unmatched remainder of a sale line."""
        with self._operation("auto_match_sale", sale_line_id=sale_line_id):
            matches = self._matches.auto_match(sale_line_id)
        return MatchResult(
            sale_line_id=sale_line_id,
            matches=tuple(matches),
            status=self._inventory.sale_line(sale_line_id),
        )

    def cancel_match(self, match_id: UUID) -> CancelledMatch:
        """Remove a match and restore its quantity to the lot."""
        with self._operation("cancel_match", match_id=match_id):
            result = self._matches.cancel_match(match_id)
        return result

    # =========================================================================
    # Lots and aggregate
    # =========================================================================

    def adjust_lot(
        self,
        lot_id: UUID,
        quantity_change: Decimal,
        reason: str,
        *,
        transaction_date: date | None = None,
    ) -> AdjustmentEntry:
        """Manual stock correction on one lot."""
        request = AdjustmentRequest(
            lot_id=lot_id,
            quantity_change=quantity_change,
            kind=AdjustmentKind.MANUAL,
            reason=reason,
            transaction_date=transaction_date or self._clock.today(),
            actor=self._actor_id,
        )
        with self._operation(
            "adjust_lot", lot_id=lot_id, quantity_change=quantity_change
        ):
            result = self._adjustments.adjust(request)
        return result

    def transfer_lot(
        self,
        lot_id: UUID,
        quantity: Decimal,
        to_warehouse_id: str | None,
        *,
        transfer_date: date | None = None,
        notes: str | None = None,
    ) -> TransferResult:
        """
        Move part of a lot into another warehouse.

        The moved quantity becomes a child lot with the same unit price and
        purchase date, so inventory value does not change.

        Raises:
            InvalidTransferError: Target warehouse equals the source.
            InsufficientStockError: ``quantity`` exceeds the lot's remaining.
        """
        with self._operation(
            "transfer_lot",
            lot_id=lot_id,
            quantity=quantity,
            to_warehouse_id=to_warehouse_id,
        ):
            result = self._transfers.transfer(
                lot_id,
                quantity,
                to_warehouse_id,
                transfer_date=transfer_date or self._clock.today(),
                notes=notes,
                actor=self._actor_id,
            )
        return result

    def reorder_lots(self, lot_ids: Sequence[UUID]) -> list[LotView]:
        with self._operation("reorder_lots", lot_count=len(lot_ids)):
            self._lots.set_manual_order(lot_ids)
        return [self._inventory.get_lot(lot_id) for lot_id in lot_ids]

    def set_product_price(self, product_id: UUID, price: Decimal | None) -> AggregateView:
        with self._operation("set_product_price", product_id=product_id, price=price):
            self._aggregate.set_manual_price(product_id, price)
        return self._inventory.get_aggregate(product_id)

    def hard_sync(self, policy: PricePolicy | None = None) -> HardSyncResult:
        """Rebuild the aggregate cache from AVAILABLE lots."""
        policy = policy or self._settings.aggregate.price_policy
        with self._operation("hard_sync", price_policy=policy.value):
            result = self._aggregate.hard_sync(policy)
        return result

    # =========================================================================
    # Audits
    # =========================================================================

    def start_audit(
        self,
        warehouse_id: str | None,
        *,
        audit_date: date | None = None,
        notes: str | None = None,
    ) -> AuditSession:
        with self._operation("start_audit", warehouse_id=warehouse_id):
            result = self._audits.start(warehouse_id, audit_date=audit_date, notes=notes)
        return result

    def update_audit_item(
        self,
        item_id: UUID,
        *,
        actual_quantity: Decimal | None = None,
        notes: str | None = None,
        is_checked: bool | None = None,
    ) -> AuditItem:
        with self._operation("update_audit_item", item_id=item_id):
            result = self._audits.update_item(
                item_id,
                actual_quantity=actual_quantity,
                notes=notes,
                is_checked=is_checked,
            )
        return result

    def sync_audit_item(self, item_id: UUID) -> AuditItem:
        """Rebase an item's frozen baseline onto the live lot quantity."""
        with self._operation("sync_audit_item", item_id=item_id):
            result = self._audits.sync_item(item_id)
        return result

    def finalize_audit(self, session_id: UUID) -> AuditTransition:
        with self._operation("finalize_audit", audit_session_id=session_id):
            result = self._audits.finalize(session_id, actor=self._actor_id)
        return result

    def revert_audit(self, session_id: UUID) -> AuditTransition:
        with self._operation("revert_audit", audit_session_id=session_id):
            result = self._audits.revert(session_id, actor=self._actor_id)
        return result

    def cancel_audit(self, session_id: UUID) -> AuditSession:
        with self._operation("cancel_audit", audit_session_id=session_id):
            result = self._audits.cancel(session_id)
        return result

    def delete_audit(self, session_id: UUID) -> None:
        with self._operation("delete_audit", audit_session_id=session_id):
            self._audits.delete(session_id)

    # =========================================================================
    # Valuation and closings
    # =========================================================================

    def value_at(self, as_of: date) -> ValuationResult:
        """Inventory value as of a date.  Never raises for data defects."""
        with self._operation("value_at", writes=False, as_of=as_of):
            result = self._valuation.value_at(as_of)
        return result

    def close_period(
        self,
        start_date: date,
        end_date: date,
        *,
        note: str | None = None,
    ) -> ClosingResult:
        """
        Compute and store the closing snapshot for ``end_date``.

        Detail rows come from live lot state and are captured only when
        ``end_date`` is today or later.
        The current value is always reconstructed from the ledger, so
        re-closing a date picks up back-dated trades.

        Raises:
            InvalidClosingRangeError: ``start_date`` is after ``end_date``.
            ClosingImmutableError: A later closing already exists.
        """
        with self._operation(
            "close_period", start_date=start_date, end_date=end_date
        ):
            if start_date > end_date:
                raise InvalidClosingRangeError(start_date, end_date)
            prior = self._valuation.value_at(start_date - timedelta(days=1))
            current = self._valuation.value_at(end_date, use_closings=False)
            figures = compute_closing(
                prior_inventory_value=prior.value,
                current_inventory_value=current.value,
                period_purchase_cost=self._inventory.period_trade_total(
                    TradeType.PURCHASE, start_date, end_date
                ),
                sales_revenue=self._inventory.period_trade_total(
                    TradeType.SALE, start_date, end_date
                ),
            )
            details: list[ClosingDetailDraft] = []
            if end_date >= self._clock.today():
                details = [
                    ClosingDetailDraft(
                        lot_id=lot.lot_id,
                        product_id=lot.product_id,
                        quantity=lot.remaining_quantity,
                        unit_price=lot.unit_price,
                    )
                    for lot in self._inventory.list_lots(available_only=True)
                    if lot.remaining_quantity > 0
                ]
            snapshot = self._closings.close(
                start_date=start_date,
                closing_date=end_date,
                figures=figures,
                details=details,
                note=note,
            )
            result = ClosingResult(
                closing_id=snapshot.id,
                start_date=start_date,
                closing_date=end_date,
                figures=figures,
                detail_count=len(details),
            )
        return result

    def delete_last_closing(self) -> date:
        """Remove the most recent closing and return its date."""
        with self._operation("delete_last_closing"):
            result = self._closings.delete_last()
        return result

    # =========================================================================
    # Read views
    # =========================================================================

    def get_lot(self, lot_id: UUID) -> LotView:
        return self._inventory.get_lot(lot_id)

    def list_lots(
        self,
        *,
        product_id: UUID | None = None,
        warehouse_id: str | None = None,
        available_only: bool = False,
    ) -> list[LotView]:
        return self._inventory.list_lots(
            product_id=product_id,
            warehouse_id=warehouse_id,
            available_only=available_only,
        )

    def sale_line_status(self, sale_line_id: UUID) -> SaleLineView:
        return self._inventory.sale_line(sale_line_id)

    def list_audit_items(self, session_id: UUID) -> list[AuditItemView]:
        return self._inventory.audit_items(session_id)

    def get_aggregate(self, product_id: UUID) -> AggregateView | None:
        return self._inventory.get_aggregate(product_id)

    def list_aggregates(self) -> list[AggregateView]:
        return self._inventory.list_aggregates()

    def list_ledger(
        self,
        *,
        product_id: UUID | None = None,
        trade_line_id: UUID | None = None,
        since: date | None = None,
    ) -> list[LedgerEntryView]:
        return self._inventory.list_ledger(
            product_id=product_id, trade_line_id=trade_line_id, since=since
        )

    def list_closings(self) -> list[ClosingSnapshot]:
        return self._closings.list_closings()
