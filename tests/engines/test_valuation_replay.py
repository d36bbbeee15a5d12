"""
Tests for backward valuation replay.

Covers:
- Only entries strictly after the target date are undone
- Newest-first ordering of contributions
- Clamping of negative results
- Replay arithmetic property (hypothesis)
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from produce_engines.cost_cascade import EntryView, PriceReferences
from produce_engines.valuation_replay import replay_valuation

PRODUCT = uuid4()


def _purchase(seq, day, quantity, price):
    return EntryView(
        seq=seq,
        transaction_date=day,
        origin="PURCHASE",
        product_id=PRODUCT,
        quantity_delta=Decimal(quantity),
        unit_price=Decimal(price),
    )


class TestReplay:
    def test_entries_on_or_before_date_are_ignored(self):
        entries = [
            _purchase(1, date(2024, 6, 1), "10", "2"),
            _purchase(2, date(2024, 6, 5), "5", "2"),
        ]
        result = replay_valuation(
            as_of=date(2024, 6, 1),
            live_value=Decimal("30"),
            entries=entries,
            references=PriceReferences(),
        )

        assert result.value == Decimal("20")
        assert result.entry_count == 1
        assert not result.clamped

    def test_contributions_newest_first(self):
        entries = [
            _purchase(1, date(2024, 6, 2), "1", "1"),
            _purchase(3, date(2024, 6, 3), "1", "1"),
            _purchase(2, date(2024, 6, 4), "1", "1"),
        ]
        result = replay_valuation(
            as_of=date(2024, 6, 1),
            live_value=Decimal("3"),
            entries=entries,
            references=PriceReferences(),
        )

        assert [c.entry.seq for c in result.contributions] == [3, 2, 1]

    def test_negative_result_is_clamped(self):
        result = replay_valuation(
            as_of=date(2024, 6, 1),
            live_value=Decimal("5"),
            entries=[_purchase(1, date(2024, 6, 2), "10", "1")],
            references=PriceReferences(),
        )

        assert result.clamped
        assert result.value == Decimal("0")
        assert result.raw_value == Decimal("-5")

    def test_outgoing_entries_add_value_back(self):
        entry = EntryView(
            seq=1,
            transaction_date=date(2024, 6, 2),
            origin="SALE",
            product_id=PRODUCT,
            quantity_delta=Decimal("-4"),
        )
        result = replay_valuation(
            as_of=date(2024, 6, 1),
            live_value=Decimal("60"),
            entries=[entry],
            references=PriceReferences(latest_purchase_price={PRODUCT: Decimal("10")}),
        )

        assert result.value == Decimal("100")


@pytest.mark.slow
@settings(max_examples=50, deadline=None)
@given(
    purchases=st.lists(
        st.tuples(
            st.integers(min_value=0, max_value=30),
            st.integers(min_value=1, max_value=500),
            st.integers(min_value=0, max_value=1000),
        ),
        max_size=20,
    ),
    cutoff=st.integers(min_value=0, max_value=30),
)
def test_replay_recovers_value_at_cutoff(purchases, cutoff):
    """Live value built from purchases, replayed back, equals the prefix sum."""
    start = date(2024, 1, 1)
    entries = [
        _purchase(seq, start + timedelta(days=day), str(qty), str(price))
        for seq, (day, qty, price) in enumerate(purchases, start=1)
    ]
    live = sum((Decimal(q) * Decimal(p) for _, q, p in purchases), Decimal("0"))
    expected = sum(
        (Decimal(q) * Decimal(p) for day, q, p in purchases if day <= cutoff),
        Decimal("0"),
    )

    result = replay_valuation(
        as_of=start + timedelta(days=cutoff),
        live_value=live,
        entries=entries,
        references=PriceReferences(),
    )

    assert result.value == expected
    assert not result.clamped
