"""
produce_engines.matching -- Lot selection for automatic sale matching.

Responsibility:
    Order candidate lots and split a sale quantity across them when the
    caller asks for an automatic default instead of picking lots by hand.
    Tie-break: oldest purchase date first, then lowest manual display rank,
    then lot id for a total order.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  MatchEngine turns the plan
    into Match rows under row locks.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from produce_engines.tracer import traced_engine

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LotCandidate:
    lot_id: UUID
    purchase_date: date
    display_order: int
    remaining: Decimal


@dataclass(frozen=True)
class Allocation:
    lot_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    """Allocations in draw order plus whatever could not be covered."""

    requested: Decimal
    allocations: tuple[Allocation, ...]
    shortfall: Decimal

    @property
    def allocated(self) -> Decimal:
        return sum((a.quantity for a in self.allocations), _ZERO)

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


def fifo_order(candidates: Iterable[LotCandidate]) -> list[LotCandidate]:
    """Sort lots oldest purchase first, then lowest display order."""
    return sorted(
        candidates,
        key=lambda c: (c.purchase_date, c.display_order, str(c.lot_id)),
    )


@traced_engine("fifo_allocation", "1.0", fingerprint_fields=("quantity",))
def plan_fifo(*, quantity: Decimal, candidates: Iterable[LotCandidate]) -> AllocationPlan:
    """
    Allocate ``quantity`` across candidates in FIFO order.

    Lots with nothing remaining are skipped.  A shortfall is reported, not
    raised; the caller decides whether a partial match is acceptable.

    Raises:
        ValueError: If quantity is negative.
    """
    if quantity < 0:
        raise ValueError(f"Cannot allocate a negative quantity: {quantity}")

    remaining = quantity
    allocations: list[Allocation] = []
    for candidate in fifo_order(candidates):
        if remaining <= 0:
            break
        if candidate.remaining <= 0:
            continue
        take = min(candidate.remaining, remaining)
        allocations.append(Allocation(candidate.lot_id, take))
        remaining -= take

    return AllocationPlan(
        requested=quantity,
        allocations=tuple(allocations),
        shortfall=remaining,
    )
