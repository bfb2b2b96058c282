"""
Error taxonomy for sweeps and the components that drive them.
"""

from __future__ import annotations

from typing import Optional


class SweepError(RuntimeError):
    """Base class for errors surfaced to sweep callers."""

    error_type = "sweep"


class StateTransitionError(SweepError):
    """Raised when a control call does not fit the current sweep status."""

    error_type = "state"

    def __init__(self, kind: str, status: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status


class AlreadyRunning(StateTransitionError):
    """A sweep of this kind is already running or paused."""

    def __init__(self, kind: str, status: str) -> None:
        super().__init__(kind, status, f"A {kind} sweep is already {status}.")


class NotRunning(StateTransitionError):
    """Pause requested for a sweep that is not running."""

    def __init__(self, kind: str, status: str) -> None:
        super().__init__(kind, status, f"The {kind} sweep is not running (status: {status}).")


class NotPaused(StateTransitionError):
    """Resume requested for a sweep that is not paused."""

    def __init__(self, kind: str, status: str) -> None:
        super().__init__(kind, status, f"The {kind} sweep is not paused (status: {status}).")


class StateConflict(SweepError):
    """Another writer persisted the sweep state first."""

    error_type = "conflict"

    def __init__(self, kind: str, expected_version: int) -> None:
        super().__init__(
            f"The {kind} sweep state changed concurrently (expected version {expected_version})."
        )
        self.kind = kind
        self.expected_version = expected_version


class ItemProcessingError(SweepError):
    """A single item failed; the sweep records it and moves on."""

    error_type = "item"

    def __init__(self, message: str, item_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class ScanFailure(SweepError):
    """The remote listing could not be read."""

    error_type = "scan"


class TransientNetworkError(SweepError):
    """A call failed in a way that is worth retrying."""

    error_type = "transient"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentConfigurationError(SweepError):
    """Storage or credentials are not configured; retrying will not help."""

    error_type = "configuration"
