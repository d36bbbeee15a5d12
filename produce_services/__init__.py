"""
produce_services -- Package init and public API.

Responsibility:
    The facade that runs the inventory ledger's external operations as
    atomic units of work over the kernel services and selectors.

Architecture position:
    Services -- orchestration over engines + kernel.

    Dependency direction (checked by tests/architecture/test_layer_boundaries.py):
        produce_services/ -> produce_kernel/, produce_engines/, produce_config/
        produce_kernel/   -> produce_services/  (FORBIDDEN)
        produce_engines/  -> produce_services/  (FORBIDDEN)
"""

from produce_services._types import (
    ClosingResult,
    ErrorCategory,
    MatchResult,
    OperationError,
    describe_error,
)
from produce_services.inventory_ledger_service import InventoryLedgerService

__all__ = [
    "ClosingResult",
    "ErrorCategory",
    "InventoryLedgerService",
    "MatchResult",
    "OperationError",
    "describe_error",
]
