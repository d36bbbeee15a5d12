"""
Typed Exception Hierarchy for the produce ledger kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the inventory core (the HTTP layer, batch jobs, tests) must be
able to tell a business-rule violation from a missing record from an
internal inconsistency without parsing message strings.  Therefore:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE class attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA as instance attributes

    try:
        service.match_sale(line_id, picks)
    except OverMatchError as e:
        api_response(code=e.code, side=e.side, capacity=e.capacity)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProduceLedgerError (base)
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- LotNotFoundError
    |   +-- LotNotAvailableError
    |   +-- LotInUseError
    |   +-- InvalidQuantityError
    |   +-- InvalidTransferError
    |
    +-- MatchError
    |   +-- OverMatchError
    |   +-- MatchNotFoundError
    |   +-- ProductMismatchError
    |   +-- NotASaleLineError
    |
    +-- TradeError
    |   +-- TradeNotFoundError
    |   +-- TradeLineNotFoundError
    |   +-- InvalidTradeLineError
    |   +-- ProductNotFoundError
    |
    +-- AuditSessionError
    |   +-- StaleAuditError
    |   +-- AuditSessionNotFoundError
    |   +-- AuditItemNotFoundError
    |   +-- AuditSessionConflictError
    |
    +-- ValuationError
    |   +-- ReconstructionInconsistencyError
    |
    +-- ClosingError
    |   +-- ClosingNotFoundError
    |   +-- ClosingImmutableError
    |   +-- InvalidClosingRangeError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                          | When Raised
-----------|-------------------------------|------------------------------------
Inventory  | INSUFFICIENT_STOCK            | Lot (or checked aggregate) goes negative
           | LOT_NOT_FOUND                 | Lot ID doesn't exist
           | LOT_NOT_AVAILABLE             | Lot is DEPLETED when matching
           | LOT_IN_USE                    | Deleting or re-pointing a used lot
           | INVALID_QUANTITY              | Zero/negative where positive needed
           | INVALID_TRANSFER              | Transfer into the same warehouse
-----------|-------------------------------|------------------------------------
Match      | OVER_MATCH                    | Exceeds lot or sale-line capacity
           | MATCH_NOT_FOUND               | Match ID doesn't exist
           | PRODUCT_MISMATCH              | Lot product != sale line product
           | NOT_A_SALE_LINE               | Matching against a non-SALE line
-----------|-------------------------------|------------------------------------
Trade      | TRADE_NOT_FOUND               | Trade ID doesn't exist
           | TRADE_LINE_NOT_FOUND          | Trade line ID doesn't exist
           | INVALID_TRADE_LINE            | Zero/negative quantity, bad price
           | PRODUCT_NOT_FOUND             | Product reference unknown
-----------|-------------------------------|------------------------------------
Audit      | STALE_AUDIT                   | Session not in the required status
           | AUDIT_SESSION_NOT_FOUND       | Session ID doesn't exist
           | AUDIT_ITEM_NOT_FOUND          | Item ID doesn't exist
           | AUDIT_SESSION_CONFLICT        | Warehouse already has an open audit
-----------|-------------------------------|------------------------------------
Valuation  | RECONSTRUCTION_INCONSISTENCY  | Replay needed clamping (logged only)
-----------|-------------------------------|------------------------------------
Closing    | CLOSING_NOT_FOUND             | No closing to delete
           | CLOSING_IMMUTABLE             | Rewriting settled history
           | INVALID_CLOSING_RANGE         | start > end
-----------|-------------------------------|------------------------------------
Immutable  | IMMUTABILITY_VIOLATION        | Update/delete of an append-only row

===============================================================================
"""

from datetime import date
from decimal import Decimal


class ProduceLedgerError(Exception):
    """
    Base exception for all produce ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRODUCE_LEDGER_ERROR"


# Inventory (lot-level) exceptions


class InventoryError(ProduceLedgerError):
    """Base exception for lot and stock errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """A reduction would take a lot or an aggregate row below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, subject: str, subject_id: str, requested: Decimal, available: Decimal):
        self.subject = subject
        self.subject_id = subject_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock on {subject} {subject_id}: "
            f"requested {requested}, available {available}"
        )


class LotNotFoundError(InventoryError):
    """Lot with given ID was not found."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class LotNotAvailableError(InventoryError):
    """Lot is not AVAILABLE for matching."""

    code: str = "LOT_NOT_AVAILABLE"

    def __init__(self, lot_id: str, status: str):
        self.lot_id = lot_id
        self.status = status
        super().__init__(f"Lot {lot_id} is not available (status {status})")


class LotInUseError(InventoryError):
    """
    Lot is referenced and cannot be removed or re-pointed.

    A purchase that has been sold against cannot be deleted.
    """

    code: str = "LOT_IN_USE"

    def __init__(self, lot_id: str, reason: str):
        self.lot_id = lot_id
        self.reason = reason
        super().__init__(f"Lot {lot_id} is in use: {reason}")


class InvalidQuantityError(InventoryError):
    """A quantity argument is outside its allowed range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: Decimal, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value}: {reason}")


class InvalidTransferError(InventoryError):
    """A warehouse transfer request cannot be carried out."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, lot_id: str, reason: str):
        self.lot_id = lot_id
        self.reason = reason
        super().__init__(f"Cannot transfer lot {lot_id}: {reason}")


# Match exceptions


class MatchError(ProduceLedgerError):
    """Base exception for sale-to-lot matching errors."""

    code: str = "MATCH_ERROR"


class OverMatchError(MatchError):
    """Requested match quantity exceeds the remaining capacity of one side."""

    code: str = "OVER_MATCH"

    def __init__(self, side: str, side_id: str, requested: Decimal, capacity: Decimal):
        self.side = side
        self.side_id = side_id
        self.requested = requested
        self.capacity = capacity
        super().__init__(
            f"Over-match on {side} {side_id}: requested {requested}, "
            f"capacity {capacity}"
        )


class MatchNotFoundError(MatchError):
    """Match with given ID was not found."""

    code: str = "MATCH_NOT_FOUND"

    def __init__(self, match_id: str):
        self.match_id = match_id
        super().__init__(f"Match not found: {match_id}")


class ProductMismatchError(MatchError):
    """Lot and sale line refer to different products."""

    code: str = "PRODUCT_MISMATCH"

    def __init__(self, lot_id: str, lot_product_id: str, line_product_id: str):
        self.lot_id = lot_id
        self.lot_product_id = lot_product_id
        self.line_product_id = line_product_id
        super().__init__(
            f"Lot {lot_id} holds product {lot_product_id}, "
            f"sale line is for {line_product_id}"
        )


class NotASaleLineError(MatchError):
    """Only SALE trade lines can be matched against lots."""

    code: str = "NOT_A_SALE_LINE"

    def __init__(self, trade_line_id: str, trade_type: str):
        self.trade_line_id = trade_line_id
        self.trade_type = trade_type
        super().__init__(
            f"Trade line {trade_line_id} is a {trade_type} line, not a SALE line"
        )


# Trade exceptions


class TradeError(ProduceLedgerError):
    """Base exception for trade and trade-line errors."""

    code: str = "TRADE_ERROR"


class TradeNotFoundError(TradeError):
    """Trade with given ID was not found."""

    code: str = "TRADE_NOT_FOUND"

    def __init__(self, trade_id: str):
        self.trade_id = trade_id
        super().__init__(f"Trade not found: {trade_id}")


class TradeLineNotFoundError(TradeError):
    """Trade line with given ID was not found."""

    code: str = "TRADE_LINE_NOT_FOUND"

    def __init__(self, trade_line_id: str):
        self.trade_line_id = trade_line_id
        super().__init__(f"Trade line not found: {trade_line_id}")


class InvalidTradeLineError(TradeError):
    """Trade line fields violate a basic shape rule."""

    code: str = "INVALID_TRADE_LINE"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid trade line {field}={value!r}: {reason}")


class ProductNotFoundError(TradeError):
    """Product reference is unknown."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


# Audit session exceptions


class AuditSessionError(ProduceLedgerError):
    """Base exception for physical-count audit errors."""

    code: str = "AUDIT_SESSION_ERROR"


class StaleAuditError(AuditSessionError):
    """Audit session is not in the status the operation requires."""

    code: str = "STALE_AUDIT"

    def __init__(self, session_id: str, status: str, expected: str):
        self.session_id = session_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Audit session {session_id} is {status}, expected {expected}"
        )


class AuditSessionNotFoundError(AuditSessionError):
    """Audit session with given ID was not found."""

    code: str = "AUDIT_SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Audit session not found: {session_id}")


class AuditItemNotFoundError(AuditSessionError):
    """Audit item with given ID was not found."""

    code: str = "AUDIT_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Audit item not found: {item_id}")


class AuditSessionConflictError(AuditSessionError):
    """The warehouse already has an IN_PROGRESS audit session."""

    code: str = "AUDIT_SESSION_CONFLICT"

    def __init__(self, warehouse_id: str, open_session_id: str):
        self.warehouse_id = warehouse_id
        self.open_session_id = open_session_id
        super().__init__(
            f"Warehouse {warehouse_id} already has audit {open_session_id} in progress"
        )


# Valuation exceptions


class ValuationError(ProduceLedgerError):
    """Base exception for valuation errors."""

    code: str = "VALUATION_ERROR"


class ReconstructionInconsistencyError(ValuationError):
    """
    Replayed valuation came out negative and had to be clamped.

    Built and logged by the reconstructor, never raised by it: reporting
    must not be blocked by historical data defects.
    """

    code: str = "RECONSTRUCTION_INCONSISTENCY"

    def __init__(self, as_of: date, raw_value: Decimal):
        self.as_of = as_of
        self.raw_value = raw_value
        super().__init__(
            f"Reconstructed inventory value for {as_of} is {raw_value}; clamped to 0"
        )


# Closing exceptions


class ClosingError(ProduceLedgerError):
    """Base exception for closing snapshot errors."""

    code: str = "CLOSING_ERROR"


class ClosingNotFoundError(ClosingError):
    """No closing snapshot exists."""

    code: str = "CLOSING_NOT_FOUND"

    def __init__(self, closing_date: date | None = None):
        self.closing_date = closing_date
        target = closing_date.isoformat() if closing_date else "any date"
        super().__init__(f"No closing snapshot for {target}")


class ClosingImmutableError(ClosingError):
    """A closing older than the latest one cannot be rewritten or deleted."""

    code: str = "CLOSING_IMMUTABLE"

    def __init__(self, closing_date: date, latest_date: date):
        self.closing_date = closing_date
        self.latest_date = latest_date
        super().__init__(
            f"Closing {closing_date} is settled; latest closing is {latest_date}"
        )


class InvalidClosingRangeError(ClosingError):
    """Closing range start is after its end."""

    code: str = "INVALID_CLOSING_RANGE"

    def __init__(self, start_date: date, end_date: date):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"Closing range start {start_date} is after end {end_date}")


# Immutability exceptions


class ImmutabilityError(ProduceLedgerError):
    """Base exception for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    LedgerEntry and AdjustmentEntry are immutable from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
