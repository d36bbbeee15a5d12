"""
Tests for line edits and deletions (ReversalCoordinator via the facade).

Covers:
- Reverse-old / apply-new pairs and their ledger tags
- Reversal idempotence for identical edits
- Purchase edits reshaping the lot, guarded by lot remaining and matches
- Sale edits overdrawing the aggregate only when negative sales are blocked
- Over-matched sale edits flagged, not resolved
- Delete guards (LotInUseError) leaving state untouched
- Sale deletion releasing matches
- Whole-trade deletion
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from produce_kernel.exceptions import (
    InsufficientStockError,
    InvalidTradeLineError,
    LotInUseError,
    LotNotFoundError,
    OverMatchError,
    TradeLineNotFoundError,
)
from produce_kernel.services.match_engine import MatchPick
from produce_kernel.services.trade_recorder import LineDraft


def _snapshot(ledger, product, lot):
    aggregate = ledger.get_aggregate(product.id)
    view = ledger.get_lot(lot.id)
    return (
        aggregate.quantity,
        aggregate.weight,
        aggregate.inventory_value,
        aggregate.purchase_price,
        view.remaining_quantity,
        view.original_quantity,
        view.unit_price,
    )


class TestUpdateLine:
    def test_identical_purchase_edit_is_a_no_op(self, ledger, buy, apple):
        lot = buy(apple, 100, 1000)
        before = _snapshot(ledger, apple, lot)

        update = ledger.update_trade_line(
            lot.trade_line_id, quantity=Decimal("100"), unit_price=Decimal("1000")
        )

        assert _snapshot(ledger, apple, lot) == before
        assert update.reversed.entry.phase == "reverse-old"
        assert update.applied.entry.phase == "apply-new"
        assert update.reversed.entry.seq < update.applied.entry.seq

    def test_identical_sale_edit_is_a_no_op(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        line = sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("25"))])
        before = _snapshot(ledger, apple, lot)

        ledger.update_trade_line(line.id, quantity=Decimal("40"))

        assert _snapshot(ledger, apple, lot) == before

    def test_purchase_price_edit_revalues(self, ledger, buy, apple):
        lot = buy(apple, 100, 1000)
        ledger.update_trade_line(lot.trade_line_id, unit_price=Decimal("1200"))

        aggregate = ledger.get_aggregate(apple.id)
        assert aggregate.inventory_value == Decimal("120000")
        assert aggregate.purchase_price == Decimal("1200")
        assert ledger.get_lot(lot.id).unit_price == Decimal("1200")

    def test_purchase_quantity_edit_shifts_lot(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("40"))])

        ledger.update_trade_line(lot.trade_line_id, quantity=Decimal("50"))

        view = ledger.get_lot(lot.id)
        assert view.original_quantity == Decimal("50")
        assert view.remaining_quantity == Decimal("10")
        assert ledger.get_aggregate(apple.id).quantity == Decimal("10")

    def test_purchase_edit_below_matched_quantity_rejected(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("40"))])
        before = _snapshot(ledger, apple, lot)

        with pytest.raises(OverMatchError):
            ledger.update_trade_line(lot.trade_line_id, quantity=Decimal("30"))

        assert _snapshot(ledger, apple, lot) == before

    def test_purchase_edit_below_matched_after_top_up_rejected(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        line = sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("40"))])
        ledger.adjust_lot(lot.id, Decimal("10"), "found crate")
        before = _snapshot(ledger, apple, lot)

        # remaining would stay positive (70 - 65) but the matches exceed 35
        with pytest.raises(OverMatchError):
            ledger.update_trade_line(lot.trade_line_id, quantity=Decimal("35"))

        assert _snapshot(ledger, apple, lot) == before
        assert ledger.sale_line_status(line.id).matched_quantity == Decimal("40")

    def test_purchase_edit_below_remaining_rejected(self, ledger, buy, apple):
        lot = buy(apple, 100, 1000)
        ledger.adjust_lot(lot.id, Decimal("-80"), "spoiled")
        before = _snapshot(ledger, apple, lot)

        with pytest.raises(InsufficientStockError):
            ledger.update_trade_line(lot.trade_line_id, quantity=Decimal("10"))

        assert _snapshot(ledger, apple, lot) == before

    def test_purchase_edit_checks_only_the_lot(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        sell(apple, 80, 1500)

        ledger.update_trade_line(lot.trade_line_id, quantity=Decimal("50"))

        view = ledger.get_lot(lot.id)
        assert view.original_quantity == Decimal("50")
        assert view.remaining_quantity == Decimal("50")
        assert ledger.get_aggregate(apple.id).quantity == Decimal("-30")

    def test_sale_shrunk_below_matched_is_flagged(self, ledger, buy, sell, apple, captured_logs):
        lot = buy(apple, 100, 1000)
        line = sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("40"))])

        update = ledger.update_trade_line(line.id, quantity=Decimal("30"))

        assert update.is_over_matched
        assert update.over_matched_quantity == Decimal("10")
        # Matches untouched; aggregate follows the line
        assert ledger.get_lot(lot.id).remaining_quantity == Decimal("60")
        assert ledger.sale_line_status(line.id).matched_quantity == Decimal("40")
        assert ledger.get_aggregate(apple.id).quantity == Decimal("70")
        assert any(r["message"] == "sale_line_overmatched" for r in captured_logs())

    def test_sale_increase_beyond_stock_goes_negative(self, ledger, buy, sell, apple):
        buy(apple, 50, 10)
        line = sell(apple, 40, 20)

        ledger.update_trade_line(line.id, quantity=Decimal("60"))

        assert ledger.get_aggregate(apple.id).quantity == Decimal("-10")

    def test_sale_increase_beyond_stock_rejected_when_blocked(
        self, strict_ledger, buy, sell, apple
    ):
        buy(apple, 50, 10)
        line = sell(apple, 40, 20)

        with pytest.raises(InsufficientStockError):
            strict_ledger.update_trade_line(line.id, quantity=Decimal("60"))

        assert strict_ledger.get_aggregate(apple.id).quantity == Decimal("10")

    def test_sale_decrease_allowed_while_blocked_below_zero(
        self, strict_ledger, ledger, buy, sell, apple
    ):
        buy(apple, 50, 10)
        line = sell(apple, 70, 20)

        strict_ledger.update_trade_line(line.id, quantity=Decimal("60"))

        assert ledger.get_aggregate(apple.id).quantity == Decimal("-10")

    def test_product_change_on_matched_sale_rejected(self, ledger, buy, sell, apple, pear):
        lot = buy(apple, 100, 1000)
        line = sell(apple, 10, 1500, picks=[MatchPick(lot.id, Decimal("10"))])

        with pytest.raises(InvalidTradeLineError):
            ledger.update_trade_line(line.id, product_id=pear.id)

    def test_product_change_moves_aggregate(self, ledger, buy, apple, pear):
        lot = buy(apple, 10, 3)
        ledger.update_trade_line(lot.trade_line_id, product_id=pear.id)

        assert ledger.get_aggregate(apple.id).quantity == Decimal("0")
        assert ledger.get_aggregate(pear.id).quantity == Decimal("10")
        assert ledger.get_lot(lot.id).product_id == pear.id

    def test_unknown_line(self, ledger):
        with pytest.raises(TradeLineNotFoundError):
            ledger.update_trade_line(uuid4(), quantity=Decimal("1"))


class TestDeleteLine:
    def test_matched_purchase_cannot_be_deleted(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("40"))])
        before = _snapshot(ledger, apple, lot)
        ledger_size = len(ledger.list_ledger())

        with pytest.raises(LotInUseError):
            ledger.delete_trade_line(lot.trade_line_id)

        assert _snapshot(ledger, apple, lot) == before
        assert len(ledger.list_ledger()) == ledger_size

    def test_untouched_purchase_delete_removes_lot(self, ledger, buy, apple):
        lot = buy(apple, 100, 1000)
        deletion = ledger.delete_trade_line(lot.trade_line_id)

        assert deletion.deleted_lot_id == lot.id
        assert deletion.reversed.entry.phase == "reverse-delete"
        assert ledger.get_aggregate(apple.id).quantity == Decimal("0")
        assert ledger.get_aggregate(apple.id).inventory_value == Decimal("0")
        with pytest.raises(LotNotFoundError):
            ledger.get_lot(lot.id)

    def test_sale_delete_releases_matches(self, ledger, buy, sell, apple):
        lot = buy(apple, 100, 1000)
        line = sell(apple, 40, 1500, picks=[MatchPick(lot.id, Decimal("40"))])

        deletion = ledger.delete_trade_line(line.id)

        assert len(deletion.released_matches) == 1
        assert ledger.get_lot(lot.id).remaining_quantity == Decimal("100")
        aggregate = ledger.get_aggregate(apple.id)
        assert aggregate.quantity == Decimal("100")
        assert aggregate.inventory_value == Decimal("100000")

    def test_ledger_keeps_history_after_delete(self, ledger, buy, apple):
        lot = buy(apple, 100, 1000)
        ledger.delete_trade_line(lot.trade_line_id)

        phases = [e.phase for e in ledger.list_ledger(product_id=apple.id)]
        assert phases == ["apply", "reverse-delete"]


class TestDeleteTrade:
    def test_reverses_every_line(self, ledger, apple, pear):
        recorded = ledger.record_purchase(
            trade_date=date(2024, 6, 1),
            lines=[
                LineDraft(product_id=apple.id, quantity=Decimal("10"), unit_price=Decimal("2")),
                LineDraft(product_id=pear.id, quantity=Decimal("5"), unit_price=Decimal("4")),
            ],
        )

        deletions = ledger.delete_trade(recorded.trade.id)

        assert len(deletions) == 2
        assert ledger.list_lots() == []
        assert ledger.value_at(date(2024, 6, 15)).value == Decimal("0")

    def test_one_blocked_line_blocks_the_trade(self, ledger, sell, apple, pear):
        recorded = ledger.record_purchase(
            trade_date=date(2024, 6, 1),
            lines=[
                LineDraft(product_id=apple.id, quantity=Decimal("10"), unit_price=Decimal("2")),
                LineDraft(product_id=pear.id, quantity=Decimal("5"), unit_price=Decimal("4")),
            ],
        )
        pear_lot = recorded.lines[1].lot
        sell(pear, 1, 9, picks=[MatchPick(pear_lot.id, Decimal("1"))])

        with pytest.raises(LotInUseError):
            ledger.delete_trade(recorded.trade.id)

        assert len(ledger.list_lots()) == 2
        assert ledger.get_aggregate(apple.id).quantity == Decimal("10")
