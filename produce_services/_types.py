"""
produce_services._types -- Result DTOs for the inventory ledger facade.

Responsibility:
    Frozen result objects returned by ``InventoryLedgerService`` where the
    kernel result alone does not carry enough, and the ``OperationError``
    conversion that lets an API layer tell a business-rule rejection from a
    missing record from an internal inconsistency without parsing messages.

Architecture position:
    Services.  Imports kernel exception types and engine figures only.

Invariants enforced:
    - Every ``ProduceLedgerError`` maps to exactly one ``ErrorCategory``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from produce_engines.costing import ClosingFigures
from produce_kernel.exceptions import (
    AuditItemNotFoundError,
    AuditSessionNotFoundError,
    ClosingNotFoundError,
    ImmutabilityError,
    LotNotFoundError,
    MatchNotFoundError,
    ProduceLedgerError,
    ProductNotFoundError,
    ReconstructionInconsistencyError,
    TradeLineNotFoundError,
    TradeNotFoundError,
)
from produce_kernel.models.match import Match
from produce_kernel.selectors.inventory_selector import SaleLineView


class ErrorCategory(str, Enum):
    BUSINESS_RULE = "business_rule"
    NOT_FOUND = "not_found"
    INCONSISTENCY = "inconsistency"


_NOT_FOUND = (
    AuditItemNotFoundError,
    AuditSessionNotFoundError,
    ClosingNotFoundError,
    LotNotFoundError,
    MatchNotFoundError,
    ProductNotFoundError,
    TradeLineNotFoundError,
    TradeNotFoundError,
)

_INCONSISTENCY = (ImmutabilityError, ReconstructionInconsistencyError)


@dataclass(frozen=True)
class OperationError:
    """Typed failure of one facade operation."""

    code: str
    category: ErrorCategory
    message: str
    details: dict[str, Any] = field(default_factory=dict)


def describe_error(exc: ProduceLedgerError) -> OperationError:
    """Convert a kernel exception into an ``OperationError``."""
    if isinstance(exc, _NOT_FOUND):
        category = ErrorCategory.NOT_FOUND
    elif isinstance(exc, _INCONSISTENCY):
        category = ErrorCategory.INCONSISTENCY
    else:
        category = ErrorCategory.BUSINESS_RULE
    details = {
        key: value if isinstance(value, (int, bool)) or value is None else str(value)
        for key, value in vars(exc).items()
        if not key.startswith("_")
    }
    return OperationError(
        code=exc.code,
        category=category,
        message=str(exc),
        details=details,
    )


@dataclass(frozen=True)
class MatchResult:
    """Matches created for a sale line and the line's status afterwards."""

    sale_line_id: UUID
    matches: tuple[Match, ...]
    status: SaleLineView

    @property
    def matched_quantity(self) -> Decimal:
        return sum((m.quantity for m in self.matches), Decimal("0"))


@dataclass(frozen=True)
class ClosingResult:
    closing_id: UUID
    start_date: date
    closing_date: date
    figures: ClosingFigures
    detail_count: int
