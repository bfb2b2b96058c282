"""
Registry/remote reconciliation, sweep processors and sync status.
"""

from .engine import (
    CloudReconciliationEngine,
    DiscrepancyRecord,
    Reconciliation,
    classify,
)
from .processors import (
    CloudSyncProcessor,
    MarkFoundProcessor,
    MigrationProcessor,
    OptimizationProcessor,
)
from .status import SyncStatus, determine_overall_status, suggest_actions

__all__ = [
    "CloudReconciliationEngine",
    "CloudSyncProcessor",
    "DiscrepancyRecord",
    "MarkFoundProcessor",
    "MigrationProcessor",
    "OptimizationProcessor",
    "Reconciliation",
    "SyncStatus",
    "classify",
    "determine_overall_status",
    "suggest_actions",
]
