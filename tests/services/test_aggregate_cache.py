"""
Tests for the per-product aggregate cache: incremental deltas, hard sync
and the manual fallback price.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from produce_config.schema import AggregateSettings, LedgerSettings
from produce_engines.costing import PricePolicy
from produce_kernel.exceptions import ProductNotFoundError
from produce_kernel.services.match_engine import MatchPick
from produce_services import InventoryLedgerService

TODAY = date(2024, 6, 15)


@pytest.fixture
def two_lots(buy, apple):
    cheap = buy(apple, 10, 100, trade_date=date(2024, 6, 1))
    dear = buy(apple, 10, 200, trade_date=date(2024, 6, 2))
    return cheap, dear


class TestIncrementalDeltas:
    def test_purchase_moves_quantity_weight_and_value(self, ledger, two_lots, apple):
        row = ledger.get_aggregate(apple.id)

        assert row.quantity == Decimal("20")
        assert row.weight == Decimal("200")
        assert row.inventory_value == Decimal("3000")
        assert row.purchase_price == Decimal("200")

    def test_matched_sale_is_valued_at_lot_price(self, ledger, two_lots, sell, apple):
        cheap, _ = two_lots
        sell(apple, 5, 999, picks=[MatchPick(cheap.id, Decimal("5"))])

        assert ledger.get_aggregate(apple.id).inventory_value == Decimal("2500")

    def test_unmatched_sale_is_valued_at_purchase_price(self, ledger, two_lots, sell, apple):
        sell(apple, 5, 999)

        assert ledger.get_aggregate(apple.id).inventory_value == Decimal("2000")


class TestHardSync:
    def test_rebuilds_from_available_lots(self, ledger, two_lots, sell, apple):
        sell(apple, 5, 999)  # unmatched: cache valued at 200, lots untouched

        result = ledger.hard_sync()

        row = ledger.get_aggregate(apple.id)
        assert row.quantity == Decimal("20")
        assert row.inventory_value == Decimal("3000")
        assert row.last_synced_at is not None
        assert result.lots_counted == 2
        assert result.total_value == Decimal("3000")

    def test_live_value_equals_lot_value_after_sync(self, ledger, two_lots, buy, pear):
        buy(pear, 8, 25)

        ledger.hard_sync()

        expected = sum(lot.value for lot in ledger.list_lots(available_only=True))
        assert ledger.value_at(TODAY).value == expected

    def test_max_policy(self, ledger, two_lots, apple):
        ledger.hard_sync(PricePolicy.MAX)

        assert ledger.get_aggregate(apple.id).purchase_price == Decimal("200")

    def test_weighted_average_policy(self, ledger, two_lots, apple):
        ledger.hard_sync(PricePolicy.WEIGHTED_AVERAGE)

        assert ledger.get_aggregate(apple.id).purchase_price == Decimal("150")

    def test_policy_defaults_to_settings(self, session, deterministic_clock, two_lots, apple):
        service = InventoryLedgerService(
            session,
            deterministic_clock,
            settings=LedgerSettings(
                aggregate=AggregateSettings(price_policy=PricePolicy.WEIGHTED_AVERAGE)
            ),
            auto_commit=False,
        )

        service.hard_sync()

        assert service.get_aggregate(apple.id).purchase_price == Decimal("150")

    def test_product_without_lots_keeps_last_price(self, ledger, buy, sell, pear):
        lot = buy(pear, 10, 50)
        sell(pear, 10, 80, picks=[MatchPick(lot.id, Decimal("10"))])

        ledger.hard_sync()

        row = ledger.get_aggregate(pear.id)
        assert row.quantity == Decimal("0")
        assert row.inventory_value == Decimal("0")
        assert row.purchase_price == Decimal("50")


class TestManualPrice:
    def test_set_and_clear(self, ledger, apple):
        view = ledger.set_product_price(apple.id, Decimal("75"))
        assert view.manual_price == Decimal("75")
        assert view.quantity == Decimal("0")

        assert ledger.set_product_price(apple.id, None).manual_price is None

    def test_unknown_product(self, ledger):
        with pytest.raises(ProductNotFoundError):
            ledger.set_product_price(uuid4(), Decimal("1"))
