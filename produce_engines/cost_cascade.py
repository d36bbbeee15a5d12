"""
produce_engines.cost_cascade -- Cost-resolution cascade for ledger replay.

Responsibility:
    Price the quantity change of one ledger entry when reconstructing past
    inventory value.  Pricing is an ordered list of tiers; each tier either
    prices some (or all) of the still-unpriced quantity or passes.

        matched cost -> recorded price -> latest purchase price
                     -> manual price -> zero

    Which tiers apply depends on the entry's origin:

        SALE        matched cost, latest purchase, manual, zero
        PURCHASE    recorded price (zero allowed -- purchases are self-priced)
        otherwise   recorded price (non-zero only), latest purchase, manual, zero

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The selector that drives
    replay loads the reference prices and hands them in as PriceReferences.

Invariants enforced:
    - Every cascade ends in ZeroTier, so every entry resolves.
    - Matched cost never prices more than the entry's own quantity; a line
      matched beyond the entry quantity is priced at its weighted-average
      matched price.
    - Decimal-only arithmetic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

_ZERO = Decimal("0")


@dataclass(frozen=True)
class EntryView:
    """The ledger fields replay needs, detached from the ORM."""

    seq: int
    transaction_date: date
    origin: str
    product_id: UUID
    quantity_delta: Decimal
    unit_price: Decimal | None = None
    trade_line_id: UUID | None = None


@dataclass(frozen=True)
class MatchedCost:
    """Total matched quantity and cost of one sale line."""

    quantity: Decimal
    cost: Decimal

    @property
    def unit_cost(self) -> Decimal:
        if self.quantity <= 0:
            return _ZERO
        return self.cost / self.quantity


@dataclass(frozen=True)
class PriceReferences:
    """Lookup tables for the cascade, keyed by product or trade line id."""

    latest_purchase_price: Mapping[UUID, Decimal] = field(default_factory=dict)
    manual_price: Mapping[UUID, Decimal] = field(default_factory=dict)
    matched: Mapping[UUID, MatchedCost] = field(default_factory=dict)


@dataclass(frozen=True)
class TierResult:
    tier: str
    quantity: Decimal
    amount: Decimal


@dataclass(frozen=True)
class ResolvedCost:
    """Signed value contribution of one entry and how it was priced."""

    entry: EntryView
    value: Decimal
    breakdown: tuple[TierResult, ...]

    @property
    def tiers_used(self) -> tuple[str, ...]:
        return tuple(part.tier for part in self.breakdown)


class CostTier(ABC):
    """One rung of the cascade."""

    name: str = "tier"

    @abstractmethod
    def price(
        self,
        entry: EntryView,
        quantity: Decimal,
        references: PriceReferences,
    ) -> TierResult | None:
        """Price up to ``quantity`` of the entry, or return None to pass."""


class _UnitPriceTier(CostTier):
    """Base for tiers that price the whole remaining quantity at one price."""

    def unit_price(self, entry: EntryView, references: PriceReferences) -> Decimal | None:
        raise NotImplementedError

    def price(self, entry, quantity, references):
        unit_price = self.unit_price(entry, references)
        if unit_price is None:
            return None
        return TierResult(self.name, quantity, quantity * unit_price)


class MatchedCostTier(CostTier):
    name = "matched_cost"

    def price(self, entry, quantity, references):
        if entry.trade_line_id is None:
            return None
        matched = references.matched.get(entry.trade_line_id)
        if matched is None or matched.quantity <= 0:
            return None
        if matched.quantity >= quantity:
            return TierResult(self.name, quantity, quantity * matched.unit_cost)
        return TierResult(self.name, matched.quantity, matched.cost)


class RecordedPriceTier(_UnitPriceTier):
    name = "recorded_price"

    def __init__(self, allow_zero: bool = False):
        self.allow_zero = allow_zero

    def unit_price(self, entry, references):
        if entry.unit_price is None:
            return None
        if entry.unit_price == 0 and not self.allow_zero:
            return None
        return entry.unit_price


class LatestPurchasePriceTier(_UnitPriceTier):
    name = "latest_purchase_price"

    def unit_price(self, entry, references):
        return references.latest_purchase_price.get(entry.product_id)


class ManualPriceTier(_UnitPriceTier):
    name = "manual_price"

    def unit_price(self, entry, references):
        return references.manual_price.get(entry.product_id)


class ZeroTier(_UnitPriceTier):
    name = "zero"

    def unit_price(self, entry, references):
        return _ZERO


SALE_CASCADE: tuple[CostTier, ...] = (
    MatchedCostTier(),
    LatestPurchasePriceTier(),
    ManualPriceTier(),
    ZeroTier(),
)

PURCHASE_CASCADE: tuple[CostTier, ...] = (
    RecordedPriceTier(allow_zero=True),
    ZeroTier(),
)

DEFAULT_CASCADE: tuple[CostTier, ...] = (
    RecordedPriceTier(),
    LatestPurchasePriceTier(),
    ManualPriceTier(),
    ZeroTier(),
)


def cascade_for(origin: str) -> tuple[CostTier, ...]:
    """Tier list for a ledger origin."""
    if origin == "SALE":
        return SALE_CASCADE
    if origin == "PURCHASE":
        return PURCHASE_CASCADE
    return DEFAULT_CASCADE


def resolve_entry_cost(
    entry: EntryView,
    references: PriceReferences,
    tiers: tuple[CostTier, ...] | None = None,
) -> ResolvedCost:
    """
    Resolve the signed value contributed by one ledger entry.

    Args:
        entry: Entry to price.
        references: Price lookups.
        tiers: Override the origin's default cascade (tests, what-if runs).

    Returns:
        ResolvedCost whose value carries the sign of quantity_delta.
    """
    remaining = abs(entry.quantity_delta)
    breakdown: list[TierResult] = []
    amount = _ZERO
    for tier in tiers or cascade_for(entry.origin):
        if remaining <= 0:
            break
        result = tier.price(entry, remaining, references)
        if result is None:
            continue
        breakdown.append(result)
        amount += result.amount
        remaining -= result.quantity

    sign = -1 if entry.quantity_delta < 0 else 1
    return ResolvedCost(entry=entry, value=amount * sign, breakdown=tuple(breakdown))
