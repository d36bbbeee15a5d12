"""Services for the produce ledger kernel (write side)."""

from produce_kernel.services.adjustment_service import AdjustmentRequest, AdjustmentService
from produce_kernel.services.aggregate_cache import (
    AggregateCache,
    AggregateChange,
    HardSyncResult,
)
from produce_kernel.services.audit_reconciler import AuditReconciler, AuditTransition
from produce_kernel.services.closing_store import ClosingDetailDraft, ClosingStore
from produce_kernel.services.ledger_recorder import LedgerEntryDraft, LedgerRecorder
from produce_kernel.services.lot_store import LotStore
from produce_kernel.services.match_engine import CancelledMatch, MatchEngine, MatchPick
from produce_kernel.services.reversal_coordinator import (
    LineApplication,
    LineChanges,
    LineDeletion,
    LineEffect,
    LineUpdate,
    ReversalCoordinator,
)
from produce_kernel.services.sequence_service import SequenceService
from produce_kernel.services.trade_recorder import (
    IngredientDraft,
    LineDraft,
    RecordedLine,
    RecordedTrade,
    TradeDraft,
    TradeRecorder,
)

__all__ = [
    "AdjustmentRequest",
    "AdjustmentService",
    "AggregateCache",
    "AggregateChange",
    "AuditReconciler",
    "AuditTransition",
    "CancelledMatch",
    "ClosingDetailDraft",
    "ClosingStore",
    "HardSyncResult",
    "IngredientDraft",
    "LedgerEntryDraft",
    "LedgerRecorder",
    "LineApplication",
    "LineChanges",
    "LineDeletion",
    "LineDraft",
    "LineEffect",
    "LineUpdate",
    "LotStore",
    "MatchEngine",
    "MatchPick",
    "RecordedLine",
    "RecordedTrade",
    "ReversalCoordinator",
    "SequenceService",
    "TradeDraft",
    "TradeRecorder",
]
