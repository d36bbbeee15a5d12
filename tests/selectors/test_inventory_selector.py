"""
Tests for InventorySelector read views.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from produce_kernel.exceptions import (
    AuditSessionNotFoundError,
    LotNotFoundError,
    NotASaleLineError,
    TradeLineNotFoundError,
)
from produce_kernel.models.trade import MatchingStatus, TradeType
from produce_kernel.selectors.inventory_selector import InventorySelector
from produce_kernel.services.match_engine import MatchPick


def test_list_lots_in_fifo_order(ledger, buy, apple, pear):
    late = buy(apple, 5, 1, trade_date=date(2024, 6, 3))
    early = buy(apple, 5, 1, trade_date=date(2024, 6, 1))
    buy(pear, 5, 1, trade_date=date(2024, 6, 2))

    lots = ledger.list_lots(product_id=apple.id)

    assert [lot.lot_id for lot in lots] == [early.id, late.id]


def test_list_lots_filters(ledger, buy, sell, apple):
    gone = buy(apple, 5, 1, warehouse_id="WH1")
    kept = buy(apple, 5, 1, warehouse_id="WH1")
    other = buy(apple, 5, 1, warehouse_id="WH2")
    sell(apple, 5, 2, picks=[MatchPick(gone.id, Decimal("5"))])

    available = {lot.lot_id for lot in ledger.list_lots(available_only=True)}
    in_wh1 = {lot.lot_id for lot in ledger.list_lots(warehouse_id="WH1")}

    assert available == {kept.id, other.id}
    assert in_wh1 == {gone.id, kept.id}


def test_lot_view_carries_matched_quantity_and_value(ledger, buy, sell, apple):
    lot = buy(apple, 10, 3)
    sell(apple, 4, 5, picks=[MatchPick(lot.id, Decimal("4"))])

    view = ledger.get_lot(lot.id)

    assert view.matched_quantity == Decimal("4")
    assert view.remaining_quantity == Decimal("6")
    assert view.value == Decimal("18")


def test_unknown_lot(ledger):
    with pytest.raises(LotNotFoundError):
        ledger.get_lot(uuid4())


def test_sale_line_status(ledger, buy, sell, apple):
    a = buy(apple, 5, 100)
    b = buy(apple, 5, 200)
    line = sell(
        apple, 8, 300, picks=[MatchPick(a.id, Decimal("5")), MatchPick(b.id, Decimal("1"))]
    )

    status = ledger.sale_line_status(line.id)

    assert status.quantity == Decimal("8")
    assert status.matched_quantity == Decimal("6")
    assert status.unmatched_quantity == Decimal("2")
    assert status.matching_status == MatchingStatus.PARTIAL
    assert status.matched_unit_price == pytest.approx(Decimal("700") / Decimal("6"))


def test_sale_line_status_rejects_purchase_lines(ledger, buy, apple):
    lot = buy(apple, 5, 100)

    with pytest.raises(NotASaleLineError):
        ledger.sale_line_status(lot.trade_line_id)
    with pytest.raises(TradeLineNotFoundError):
        ledger.sale_line_status(uuid4())


def test_audit_items_for_unknown_session(ledger):
    with pytest.raises(AuditSessionNotFoundError):
        ledger.list_audit_items(uuid4())


def test_list_ledger_filters(ledger, buy, sell, apple, pear):
    buy(apple, 5, 1, trade_date=date(2024, 6, 1))
    buy(pear, 5, 1, trade_date=date(2024, 6, 2))
    line = sell(apple, 2, 1, trade_date=date(2024, 6, 10))

    assert len(ledger.list_ledger()) == 3
    assert len(ledger.list_ledger(product_id=apple.id)) == 2
    assert [e.kind for e in ledger.list_ledger(trade_line_id=line.id)] == ["OUT"]
    assert len(ledger.list_ledger(since=date(2024, 6, 2))) == 2


def test_list_aggregates(ledger, buy, apple, pear):
    buy(apple, 5, 1)
    buy(pear, 5, 1)

    assert {row.product_id for row in ledger.list_aggregates()} == {apple.id, pear.id}


def test_period_trade_total(ledger, buy, sell, apple, session, deterministic_clock):
    buy(apple, 10, 100, trade_date=date(2024, 6, 1))
    buy(apple, 10, 200, trade_date=date(2024, 6, 20))
    sell(apple, 3, 150, trade_date=date(2024, 6, 5))

    selector = InventorySelector(session, deterministic_clock)

    assert selector.period_trade_total(
        TradeType.PURCHASE, date(2024, 6, 1), date(2024, 6, 30)
    ) == Decimal("3000")
    assert selector.period_trade_total(
        TradeType.SALE, date(2024, 6, 1), date(2024, 6, 4)
    ) == Decimal("0")
    assert selector.period_trade_total(
        TradeType.SALE, date(2024, 6, 5), date(2024, 6, 5)
    ) == Decimal("450")
