"""
ORM-Level Append-Only Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The valuation reconstructor computes past inventory value by replaying
ledger entries backwards from the live state.  That only works if an entry,
once written, never changes.  Audit adjustments are the paper trail of
physical counts and carry the same rule.  This module turns "do not update
or delete" from a convention into a hard failure.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners intercept these events and raise:

    session.flush()
         |
         v
    [before_update event] --> _reject_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _reject_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only for INSERTs of protected entities)

If a check fails the flush aborts and the caller's transaction rolls back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable          | Why
------------------|-------------------------|---------------------------------
LedgerEntry       | ALWAYS (from creation)  | Replay source for valuation
AdjustmentEntry   | ALWAYS (from creation)  | Audit trail of stock corrections
WarehouseTransfer | ALWAYS (from creation)  | Record of moves between warehouses

Bulk ``session.execute(update(...))`` statements bypass mapper events; the
kernel never issues them against these tables.

===============================================================================
USAGE
===============================================================================

Called by create_tables() and at application startup:

    from produce_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from produce_kernel.exceptions import ImmutabilityViolationError
from produce_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(entity_type: str, target, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_ledger_entry_update(mapper, connection, target):
    _reject("LedgerEntry", target, "Ledger entries are append-only and cannot be modified")


def _reject_ledger_entry_delete(mapper, connection, target):
    _reject("LedgerEntry", target, "Ledger entries are append-only and cannot be deleted")


def _reject_adjustment_entry_update(mapper, connection, target):
    _reject("AdjustmentEntry", target, "Adjustment entries are append-only and cannot be modified")


def _reject_adjustment_entry_delete(mapper, connection, target):
    _reject("AdjustmentEntry", target, "Adjustment entries are append-only and cannot be deleted")


def _reject_transfer_update(mapper, connection, target):
    _reject("WarehouseTransfer", target, "Warehouse transfers are append-only and cannot be modified")


def _reject_transfer_delete(mapper, connection, target):
    _reject("WarehouseTransfer", target, "Warehouse transfers are append-only and cannot be deleted")


_LISTENERS = (
    ("LedgerEntry", "before_update", _reject_ledger_entry_update),
    ("LedgerEntry", "before_delete", _reject_ledger_entry_delete),
    ("AdjustmentEntry", "before_update", _reject_adjustment_entry_update),
    ("AdjustmentEntry", "before_delete", _reject_adjustment_entry_delete),
    ("WarehouseTransfer", "before_update", _reject_transfer_update),
    ("WarehouseTransfer", "before_delete", _reject_transfer_delete),
)


def _models() -> dict:
    from produce_kernel.models.adjustment import AdjustmentEntry
    from produce_kernel.models.ledger_entry import LedgerEntry
    from produce_kernel.models.transfer import WarehouseTransfer

    return {
        "LedgerEntry": LedgerEntry,
        "AdjustmentEntry": AdjustmentEntry,
        "WarehouseTransfer": WarehouseTransfer,
    }


def register_immutability_listeners() -> None:
    """
    Register all append-only enforcement listeners.

    Idempotent: listeners already attached are not attached twice.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove append-only enforcement listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(models[model_name], event_name, listener_fn)
