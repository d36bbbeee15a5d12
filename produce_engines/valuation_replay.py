"""
produce_engines.valuation_replay -- Backward replay of ledger entries.

Responsibility:
    Given the live inventory value and every ledger entry dated after a
    target date, compute the inventory value at that date:

        value(as_of) = live_value - sum(contribution(entry) for entries after as_of)

    Each contribution is priced by the cost cascade.  A negative result is
    clamped to zero and flagged; it means the ledger is missing entries or
    carries corrupted prices, which replay cannot repair.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ValuationReconstructor
    (kernel selector) loads entries and references and calls replay().

Invariants enforced:
    - Never returns a negative value.
    - Entries are processed newest first by seq; the sum is order
      independent but the per-entry trail is reported in replay order.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from produce_engines.cost_cascade import (
    EntryView,
    PriceReferences,
    ResolvedCost,
    resolve_entry_cost,
)
from produce_engines.tracer import traced_engine

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReplayResult:
    """Outcome of one backward replay."""

    as_of: date
    live_value: Decimal
    replayed_value: Decimal
    raw_value: Decimal
    value: Decimal
    clamped: bool
    contributions: tuple[ResolvedCost, ...]

    @property
    def entry_count(self) -> int:
        return len(self.contributions)


@traced_engine("valuation_replay", "1.0", fingerprint_fields=("as_of", "live_value"))
def replay_valuation(
    *,
    as_of: date,
    live_value: Decimal,
    entries: Iterable[EntryView],
    references: PriceReferences,
) -> ReplayResult:
    """
    Undo every entry after ``as_of`` from the live value.

    Args:
        as_of: Target date; only entries with transaction_date > as_of count.
        live_value: Current inventory value.
        entries: Candidate entries (filtered again here for safety).
        references: Price lookups for the cascade.

    Returns:
        ReplayResult with the clamped value and the raw value before clamping.
    """
    ordered = sorted(
        (e for e in entries if e.transaction_date > as_of),
        key=lambda e: e.seq,
        reverse=True,
    )
    contributions = tuple(resolve_entry_cost(e, references) for e in ordered)
    replayed = sum((c.value for c in contributions), _ZERO)
    raw = live_value - replayed
    clamped = raw < 0
    return ReplayResult(
        as_of=as_of,
        live_value=live_value,
        replayed_value=replayed,
        raw_value=raw,
        value=_ZERO if clamped else raw,
        clamped=clamped,
        contributions=contributions,
    )
