"""Selectors for the produce ledger kernel (read side)."""

from produce_kernel.selectors.inventory_selector import (
    AggregateView,
    AuditItemView,
    InventorySelector,
    LedgerEntryView,
    LotView,
    SaleLineView,
)
from produce_kernel.selectors.valuation_reconstructor import (
    ValuationReconstructor,
    ValuationResult,
    ValuationSource,
)

__all__ = [
    "AggregateView",
    "AuditItemView",
    "InventorySelector",
    "LedgerEntryView",
    "LotView",
    "SaleLineView",
    "ValuationReconstructor",
    "ValuationResult",
    "ValuationSource",
]
