"""
Tests for the cost-resolution cascade.

Covers:
- Tier order per origin
- Matched cost covering all, part, or more than the entry quantity
- Fallback through latest purchase price, manual price and zero
- Sign of the resolved value
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from produce_engines.cost_cascade import (
    DEFAULT_CASCADE,
    PURCHASE_CASCADE,
    SALE_CASCADE,
    EntryView,
    ManualPriceTier,
    MatchedCost,
    PriceReferences,
    ZeroTier,
    cascade_for,
    resolve_entry_cost,
)

PRODUCT = uuid4()
LINE = uuid4()


def _entry(origin="SALE", quantity="-10", unit_price=None, trade_line_id=LINE):
    return EntryView(
        seq=1,
        transaction_date=date(2024, 6, 10),
        origin=origin,
        product_id=PRODUCT,
        quantity_delta=Decimal(quantity),
        unit_price=Decimal(unit_price) if unit_price is not None else None,
        trade_line_id=trade_line_id,
    )


class TestCascadeSelection:
    def test_sale_cascade(self):
        assert cascade_for("SALE") is SALE_CASCADE
        assert [t.name for t in SALE_CASCADE] == [
            "matched_cost",
            "latest_purchase_price",
            "manual_price",
            "zero",
        ]

    def test_purchase_cascade(self):
        assert cascade_for("PURCHASE") is PURCHASE_CASCADE

    def test_other_origins_use_default(self):
        for origin in ("AUDIT", "MANUAL", "PRODUCTION"):
            assert cascade_for(origin) is DEFAULT_CASCADE

    def test_every_cascade_ends_in_zero(self):
        for cascade in (SALE_CASCADE, PURCHASE_CASCADE, DEFAULT_CASCADE):
            assert isinstance(cascade[-1], ZeroTier)


class TestSalePricing:
    def test_fully_matched_uses_matched_cost(self):
        refs = PriceReferences(
            matched={LINE: MatchedCost(quantity=Decimal("10"), cost=Decimal("100"))},
            latest_purchase_price={PRODUCT: Decimal("99")},
        )
        resolved = resolve_entry_cost(_entry(), refs)

        assert resolved.value == Decimal("-100")
        assert resolved.tiers_used == ("matched_cost",)

    def test_partially_matched_falls_back_for_remainder(self):
        refs = PriceReferences(
            matched={LINE: MatchedCost(quantity=Decimal("4"), cost=Decimal("40"))},
            latest_purchase_price={PRODUCT: Decimal("12")},
        )
        resolved = resolve_entry_cost(_entry(), refs)

        # 4 @ 10 + 6 @ 12
        assert resolved.value == Decimal("-112")
        assert resolved.tiers_used == ("matched_cost", "latest_purchase_price")

    def test_over_matched_line_priced_at_weighted_average(self):
        refs = PriceReferences(
            matched={LINE: MatchedCost(quantity=Decimal("20"), cost=Decimal("300"))},
        )
        resolved = resolve_entry_cost(_entry(), refs)

        assert resolved.value == Decimal("-150")

    def test_unmatched_without_purchase_uses_manual_price(self):
        refs = PriceReferences(manual_price={PRODUCT: Decimal("7")})
        resolved = resolve_entry_cost(_entry(), refs)

        assert resolved.value == Decimal("-70")
        assert resolved.tiers_used == ("manual_price",)

    def test_nothing_known_resolves_to_zero(self):
        resolved = resolve_entry_cost(_entry(), PriceReferences())

        assert resolved.value == Decimal("0")
        assert resolved.tiers_used == ("zero",)

    def test_sale_ignores_recorded_selling_price(self):
        refs = PriceReferences(latest_purchase_price={PRODUCT: Decimal("5")})
        resolved = resolve_entry_cost(_entry(unit_price="50"), refs)

        assert resolved.value == Decimal("-50")


class TestOtherOrigins:
    def test_purchase_is_self_priced(self):
        refs = PriceReferences(latest_purchase_price={PRODUCT: Decimal("99")})
        resolved = resolve_entry_cost(
            _entry(origin="PURCHASE", quantity="10", unit_price="3"), refs
        )

        assert resolved.value == Decimal("30")

    def test_zero_priced_purchase_stays_zero(self):
        refs = PriceReferences(latest_purchase_price={PRODUCT: Decimal("99")})
        resolved = resolve_entry_cost(
            _entry(origin="PURCHASE", quantity="10", unit_price="0"), refs
        )

        assert resolved.value == Decimal("0")
        assert resolved.tiers_used == ("recorded_price",)

    def test_adjustment_with_zero_price_falls_through(self):
        refs = PriceReferences(latest_purchase_price={PRODUCT: Decimal("4")})
        resolved = resolve_entry_cost(
            _entry(origin="AUDIT", quantity="-5", unit_price="0", trade_line_id=None), refs
        )

        assert resolved.value == Decimal("-20")
        assert resolved.tiers_used == ("latest_purchase_price",)

    def test_custom_tier_override(self):
        refs = PriceReferences(
            latest_purchase_price={PRODUCT: Decimal("4")},
            manual_price={PRODUCT: Decimal("6")},
        )
        resolved = resolve_entry_cost(
            _entry(origin="MANUAL", quantity="2", trade_line_id=None),
            refs,
            tiers=(ManualPriceTier(), ZeroTier()),
        )

        assert resolved.value == Decimal("12")
