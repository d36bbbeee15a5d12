"""
Tests for warehouse transfers (TransferService via the facade).

Covers:
- Child lot keeps price and purchase date, takes pro-rata weight
- transfer-out / transfer-in ledger pair netting to zero
- Guards: same warehouse, over-transfer, non-positive quantity
- Source lot delete guard and FIFO matching in the target warehouse
"""

from datetime import date
from decimal import Decimal

import pytest

from produce_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    LotInUseError,
)

TODAY = date(2024, 6, 15)


@pytest.fixture
def wh1_lot(buy, apple):
    """100 apples @ 1000 in WH1, weight 1000."""
    return buy(apple, 100, 1000)


class TestTransferLot:
    def test_child_lot_keeps_price_and_date(self, ledger, wh1_lot):
        result = ledger.transfer_lot(wh1_lot.id, Decimal("30"), "WH2", notes="restock")

        target = ledger.get_lot(result.target.id)
        assert target.warehouse_id == "WH2"
        assert target.unit_price == Decimal("1000")
        assert target.purchase_date == date(2024, 6, 1)
        assert target.original_quantity == target.remaining_quantity == Decimal("30")
        assert target.remaining_weight == Decimal("300")
        assert result.target.parent_lot_id == wh1_lot.id
        assert result.target.trade_line_id is None

        source = ledger.get_lot(wh1_lot.id)
        assert source.remaining_quantity == Decimal("70")
        assert source.remaining_weight == Decimal("700")

    def test_transfer_is_recorded(self, ledger, wh1_lot):
        record = ledger.transfer_lot(
            wh1_lot.id, Decimal("30"), "WH2", transfer_date=date(2024, 6, 5)
        ).transfer

        assert record.transfer_date == date(2024, 6, 5)
        assert (record.from_warehouse_id, record.to_warehouse_id) == ("WH1", "WH2")
        assert record.quantity == Decimal("30")
        assert record.weight == Decimal("300")
        assert record.unit_price == Decimal("1000")
        assert record.actor == "tester"

    def test_date_defaults_to_today(self, ledger, wh1_lot):
        record = ledger.transfer_lot(wh1_lot.id, Decimal("1"), "WH2").transfer

        assert record.transfer_date == TODAY

    def test_ledger_pair_nets_to_zero(self, ledger, wh1_lot, apple):
        before = ledger.get_aggregate(apple.id)

        result = ledger.transfer_lot(wh1_lot.id, Decimal("30"), "WH2")

        out_entry, in_entry = result.entries
        assert (out_entry.kind, out_entry.origin, out_entry.phase) == (
            "ADJUST",
            "TRANSFER",
            "transfer-out",
        )
        assert (in_entry.kind, in_entry.phase) == ("ADJUST", "transfer-in")
        assert out_entry.quantity_delta + in_entry.quantity_delta == Decimal("0")
        assert out_entry.weight_delta + in_entry.weight_delta == Decimal("0")
        assert out_entry.lot_id == wh1_lot.id
        assert in_entry.lot_id == result.target.id
        assert out_entry.seq + 1 == in_entry.seq

        after = ledger.get_aggregate(apple.id)
        assert after.quantity == before.quantity
        assert after.weight == before.weight
        assert after.inventory_value == before.inventory_value
        assert ledger.value_at(TODAY).value == Decimal("100000")

    def test_valuation_before_transfer_unchanged(self, ledger, wh1_lot):
        ledger.transfer_lot(wh1_lot.id, Decimal("30"), "WH2", transfer_date=date(2024, 6, 5))

        assert ledger.value_at(date(2024, 6, 3)).value == Decimal("100000")

    def test_same_warehouse_rejected(self, ledger, wh1_lot):
        with pytest.raises(InvalidTransferError):
            ledger.transfer_lot(wh1_lot.id, Decimal("10"), "WH1")

        assert ledger.get_lot(wh1_lot.id).remaining_quantity == Decimal("100")
        assert len(ledger.list_ledger()) == 1

    def test_over_transfer_rejected(self, ledger, wh1_lot):
        with pytest.raises(InsufficientStockError):
            ledger.transfer_lot(wh1_lot.id, Decimal("101"), "WH2")

        assert ledger.list_lots(warehouse_id="WH2") == []
        assert len(ledger.list_ledger()) == 1

    def test_non_positive_quantity_rejected(self, ledger, wh1_lot):
        with pytest.raises(InvalidQuantityError):
            ledger.transfer_lot(wh1_lot.id, Decimal("0"), "WH2")

    def test_source_purchase_cannot_be_deleted(self, ledger, wh1_lot):
        ledger.transfer_lot(wh1_lot.id, Decimal("30"), "WH2")

        with pytest.raises(LotInUseError, match="warehouse transfers"):
            ledger.delete_trade_line(wh1_lot.trade_line_id)

    def test_target_warehouse_sale_matches_child_lot(self, ledger, wh1_lot, sell, apple):
        child = ledger.transfer_lot(wh1_lot.id, Decimal("30"), "WH2").target

        line = sell(apple, 10, 1500, auto_match=True, warehouse_id="WH2")

        status = ledger.sale_line_status(line.id)
        assert status.matched_quantity == Decimal("10")
        assert ledger.get_lot(child.id).remaining_quantity == Decimal("20")
        assert ledger.get_lot(wh1_lot.id).remaining_quantity == Decimal("70")
