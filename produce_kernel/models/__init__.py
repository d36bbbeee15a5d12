"""Domain models for the produce ledger kernel."""

from produce_kernel.models.adjustment import AdjustmentEntry, AdjustmentKind
from produce_kernel.models.aggregate import AggregateRow
from produce_kernel.models.audit import AuditItem, AuditSession, AuditStatus
from produce_kernel.models.closing import ClosingSnapshot, ClosingSnapshotDetail
from produce_kernel.models.ledger_entry import (
    LedgerEntry,
    LedgerKind,
    LedgerOrigin,
    LedgerPhase,
)
from produce_kernel.models.lot import Lot, LotStatus
from produce_kernel.models.match import Match
from produce_kernel.models.product import Product
from produce_kernel.models.sequence import SequenceCounter
from produce_kernel.models.trade import MatchingStatus, Trade, TradeLine, TradeType
from produce_kernel.models.transfer import WarehouseTransfer

__all__ = [
    "Product",
    "Trade",
    "TradeLine",
    "TradeType",
    "MatchingStatus",
    "Lot",
    "LotStatus",
    "Match",
    "LedgerEntry",
    "LedgerKind",
    "LedgerOrigin",
    "LedgerPhase",
    "AggregateRow",
    "AdjustmentEntry",
    "AdjustmentKind",
    "AuditSession",
    "AuditItem",
    "AuditStatus",
    "ClosingSnapshot",
    "ClosingSnapshotDetail",
    "SequenceCounter",
    "WarehouseTransfer",
]
