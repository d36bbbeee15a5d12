"""
Module: produce_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    the kernel services and selectors.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    MUST NOT import produce_kernel services/selectors or produce_services.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.
"""

from produce_engines.cost_cascade import (
    EntryView,
    MatchedCost,
    PriceReferences,
    ResolvedCost,
    cascade_for,
    resolve_entry_cost,
)
from produce_engines.costing import (
    ClosingFigures,
    IngredientUse,
    PricePolicy,
    ProductionCost,
    compute_closing,
    policy_price,
    production_cost,
)
from produce_engines.matching import (
    Allocation,
    AllocationPlan,
    LotCandidate,
    fifo_order,
    plan_fifo,
)
from produce_engines.valuation_replay import ReplayResult, replay_valuation

__all__ = [
    "EntryView",
    "MatchedCost",
    "PriceReferences",
    "ResolvedCost",
    "cascade_for",
    "resolve_entry_cost",
    "ReplayResult",
    "replay_valuation",
    "LotCandidate",
    "Allocation",
    "AllocationPlan",
    "fifo_order",
    "plan_fifo",
    "PricePolicy",
    "policy_price",
    "IngredientUse",
    "ProductionCost",
    "production_cost",
    "ClosingFigures",
    "compute_closing",
]
