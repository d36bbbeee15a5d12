"""
Tests for ValuationReconstructor: live fast path, stored closings and
backward replay with the non-negative clamp.
"""

from datetime import date
from decimal import Decimal

import pytest

from produce_kernel.models.ledger_entry import LedgerOrigin, LedgerPhase
from produce_kernel.selectors.valuation_reconstructor import (
    ValuationReconstructor,
    ValuationSource,
)
from produce_kernel.services.ledger_recorder import LedgerEntryDraft, LedgerRecorder
from produce_kernel.services.match_engine import MatchPick

TODAY = date(2024, 6, 15)


@pytest.fixture
def history(buy, sell, apple):
    """
    6/1  buy 10 @100
    6/5  buy 10 @200
    6/10 sell 5 of the 6/1 lot
    """
    first = buy(apple, 10, 100, trade_date=date(2024, 6, 1))
    buy(apple, 10, 200, trade_date=date(2024, 6, 5))
    sell(apple, 5, 999, trade_date=date(2024, 6, 10), picks=[MatchPick(first.id, Decimal("5"))])
    return first


class TestLivePath:
    @pytest.mark.parametrize("as_of", [TODAY, date(2024, 7, 1)])
    def test_today_or_later_is_live(self, ledger, history, as_of):
        result = ledger.value_at(as_of)

        assert result.source == ValuationSource.LIVE
        assert result.value == Decimal("2500")
        assert result.entries_replayed == 0


class TestReplay:
    @pytest.mark.parametrize(
        "as_of,expected,replayed",
        [
            (date(2024, 6, 14), Decimal("2500"), 0),
            (date(2024, 6, 9), Decimal("3000"), 1),
            (date(2024, 6, 4), Decimal("1000"), 2),
            (date(2024, 5, 31), Decimal("0"), 3),
        ],
    )
    def test_value_at_past_dates(self, ledger, history, as_of, expected, replayed):
        result = ledger.value_at(as_of)

        assert result.source == ValuationSource.REPLAY
        assert result.value == expected
        assert result.entries_replayed == replayed
        assert result.is_consistent

    def test_unmatched_sale_priced_at_latest_purchase(self, ledger, buy, sell, apple):
        buy(apple, 10, 100, trade_date=date(2024, 6, 1))
        buy(apple, 10, 200, trade_date=date(2024, 6, 5))
        sell(apple, 5, 999, trade_date=date(2024, 6, 10))

        # live = 3000 - 5 * 200; replaying the sale adds the same 1000 back
        assert ledger.value_at(date(2024, 6, 9)).value == Decimal("3000")

    def test_sale_priced_at_manual_price_without_purchases(
        self, ledger, session, deterministic_clock, apple
    ):
        ledger.set_product_price(apple.id, Decimal("40"))
        recorder = LedgerRecorder(session, deterministic_clock)
        recorder.append(
            LedgerEntryDraft(
                transaction_date=date(2024, 6, 10),
                origin=LedgerOrigin.SALE,
                phase=LedgerPhase.APPLY,
                product_id=apple.id,
                quantity_delta=Decimal("-3"),
                weight_delta=Decimal("0"),
                before_quantity=Decimal("3"),
                after_quantity=Decimal("0"),
            )
        )

        result = ValuationReconstructor(session, deterministic_clock).replay(
            date(2024, 6, 9), Decimal("0")
        )

        assert result.value == Decimal("120")
        assert result.contributions[0].tiers_used == ("manual_price",)


class TestClamp:
    def test_negative_replay_is_clamped_and_logged(
        self, ledger, buy, apple, session, deterministic_clock, captured_logs
    ):
        buy(apple, 10, 100, trade_date=date(2024, 6, 1))
        # history claims 50 more arrived on 6/10 than the cache ever saw
        LedgerRecorder(session, deterministic_clock).append(
            LedgerEntryDraft(
                transaction_date=date(2024, 6, 10),
                origin=LedgerOrigin.PURCHASE,
                phase=LedgerPhase.APPLY,
                product_id=apple.id,
                quantity_delta=Decimal("50"),
                weight_delta=Decimal("0"),
                before_quantity=Decimal("10"),
                after_quantity=Decimal("60"),
                unit_price=Decimal("100"),
            )
        )

        result = ledger.value_at(date(2024, 6, 9))

        assert result.value == Decimal("0")
        assert result.raw_value == Decimal("-4000")
        assert result.clamped
        assert not result.is_consistent
        clamped = [r for r in captured_logs() if r["message"] == "valuation_clamped"]
        assert len(clamped) == 1
        assert clamped[0]["level"] == "WARNING"


class TestClosingPath:
    def test_closing_without_details_uses_stored_value(self, ledger, history):
        ledger.close_period(date(2024, 6, 1), date(2024, 6, 9))

        result = ledger.value_at(date(2024, 6, 9))

        assert result.source == ValuationSource.CLOSING
        assert result.value == Decimal("3000")

    def test_use_closings_flag_forces_replay(self, ledger, history, session, deterministic_clock):
        ledger.close_period(date(2024, 6, 1), date(2024, 6, 9))

        result = ValuationReconstructor(session, deterministic_clock).value_at(
            date(2024, 6, 9), use_closings=False
        )

        assert result.source == ValuationSource.REPLAY
        assert result.value == Decimal("3000")
