"""
Resumable batch sweeps: state model, errors and the generic controller.
"""

from .controller import BatchJobController
from .errors import (
    AlreadyRunning,
    ItemProcessingError,
    NotPaused,
    NotRunning,
    PermanentConfigurationError,
    ScanFailure,
    StateConflict,
    StateTransitionError,
    SweepError,
    TransientNetworkError,
)
from .models import SWEEP_KINDS, BatchJobState, BatchResult, BatchStatus, ItemError, ItemResult
from .processor import ItemProcessor

__all__ = [
    "AlreadyRunning",
    "BatchJobController",
    "BatchJobState",
    "BatchResult",
    "BatchStatus",
    "ItemError",
    "ItemProcessingError",
    "ItemProcessor",
    "ItemResult",
    "NotPaused",
    "NotRunning",
    "PermanentConfigurationError",
    "SWEEP_KINDS",
    "ScanFailure",
    "StateConflict",
    "StateTransitionError",
    "SweepError",
    "TransientNetworkError",
]
