"""
Derived properties on TradeLine and Lot, exercised on transient objects.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.models.match import Match
from produce_kernel.models.product import Product
from produce_kernel.models.trade import MatchingStatus, TradeLine, TradeType


def _match(quantity, price):
    return Match(
        quantity=Decimal(quantity),
        lot_unit_price=Decimal(price),
        matched_at=datetime(2024, 6, 10, tzinfo=timezone.utc),
        matched_date=date(2024, 6, 10),
    )


def _sale_line(quantity, *matches):
    line = TradeLine(quantity=Decimal(quantity), unit_price=Decimal("1"))
    line.matches = list(matches)
    return line


class TestMatchingStatus:
    def test_pending_without_matches(self):
        line = _sale_line("-10")

        assert line.matching_status == MatchingStatus.PENDING
        assert line.unmatched_quantity == Decimal("10")
        assert line.matched_unit_price is None

    def test_partial(self):
        line = _sale_line("-10", _match("4", "100"))

        assert line.matching_status == MatchingStatus.PARTIAL
        assert line.unmatched_quantity == Decimal("6")

    def test_matched(self):
        line = _sale_line("-10", _match("4", "100"), _match("6", "200"))

        assert line.matching_status == MatchingStatus.MATCHED
        assert line.matched_unit_price == Decimal("160")

    def test_over_matched_line_reports_zero_unmatched(self):
        line = _sale_line("-5", _match("8", "100"))

        assert line.matching_status == MatchingStatus.MATCHED
        assert line.unmatched_quantity == Decimal("0")


class TestEffectiveWeight:
    def test_explicit_weight_wins(self):
        line = TradeLine(quantity=Decimal("3"), total_weight=Decimal("-42"))
        line.product = Product(code="X", name="X", unit_weight=Decimal("10"))

        assert line.effective_weight == Decimal("42")

    def test_unit_weight_times_quantity(self):
        line = TradeLine(quantity=Decimal("-3"))
        line.product = Product(code="X", name="X", unit_weight=Decimal("2.5"))

        assert line.effective_weight == Decimal("7.5")

    def test_no_weight_information(self):
        line = TradeLine(quantity=Decimal("3"))
        line.product = Product(code="X", name="X", unit_weight=None)

        assert line.effective_weight == Decimal("0")


@pytest.mark.parametrize(
    "trade_type,creates_lots",
    [
        (TradeType.PURCHASE, True),
        (TradeType.PRODUCTION, True),
        (TradeType.SALE, False),
    ],
)
def test_trade_type_creates_lots(trade_type, creates_lots):
    assert trade_type.creates_lots is creates_lots


class TestLot:
    def test_status_follows_remaining(self):
        lot = Lot(remaining_quantity=Decimal("0"), unit_price=Decimal("5"))

        lot.refresh_status()
        assert lot.status == LotStatus.DEPLETED.value
        assert not lot.is_available

        lot.remaining_quantity = Decimal("2")
        lot.refresh_status()
        assert lot.is_available
        assert lot.value == Decimal("10")
