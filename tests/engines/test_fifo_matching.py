"""
Tests for FIFO allocation planning.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from produce_engines.matching import LotCandidate, fifo_order, plan_fifo


def _lot(day, order, remaining):
    return LotCandidate(
        lot_id=uuid4(),
        purchase_date=date(2024, 6, day),
        display_order=order,
        remaining=Decimal(remaining),
    )


class TestFifoOrder:
    def test_oldest_purchase_first(self):
        newer = _lot(5, 1, "10")
        older = _lot(1, 2, "10")

        assert fifo_order([newer, older]) == [older, newer]

    def test_display_order_breaks_ties(self):
        second = _lot(1, 2, "10")
        first = _lot(1, 1, "10")

        assert fifo_order([second, first]) == [first, second]


class TestPlanFifo:
    def test_spans_lots_in_order(self):
        a = _lot(1, 1, "30")
        b = _lot(2, 1, "50")
        plan = plan_fifo(quantity=Decimal("45"), candidates=[b, a])

        assert [(x.lot_id, x.quantity) for x in plan.allocations] == [
            (a.lot_id, Decimal("30")),
            (b.lot_id, Decimal("15")),
        ]
        assert plan.is_complete

    def test_reports_shortfall(self):
        plan = plan_fifo(quantity=Decimal("100"), candidates=[_lot(1, 1, "40")])

        assert plan.allocated == Decimal("40")
        assert plan.shortfall == Decimal("60")
        assert not plan.is_complete

    def test_skips_empty_lots(self):
        empty = _lot(1, 1, "0")
        full = _lot(2, 1, "10")
        plan = plan_fifo(quantity=Decimal("5"), candidates=[empty, full])

        assert [a.lot_id for a in plan.allocations] == [full.lot_id]

    def test_zero_quantity_allocates_nothing(self):
        plan = plan_fifo(quantity=Decimal("0"), candidates=[_lot(1, 1, "10")])

        assert plan.allocations == ()
        assert plan.is_complete

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError):
            plan_fifo(quantity=Decimal("-1"), candidates=[])
