"""
Data model for resumable sweeps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

SWEEP_KINDS = ("migration", "optimization", "reconciliation", "cloudsync")
MAX_ERRORS = 50
DEFAULT_BATCH_SIZE = 25


class BatchStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"

    @property
    def active(self) -> bool:
        return self in (BatchStatus.RUNNING, BatchStatus.PAUSED)


@dataclass(frozen=True)
class ItemError:
    """A failure recorded against one item."""

    item_id: int
    error: str

    def to_dict(self) -> dict:
        return {"item_id": self.item_id, "error": self.error}


@dataclass
class BatchJobState:
    """Persisted snapshot of one sweep's progress."""

    kind: str
    status: BatchStatus = BatchStatus.IDLE
    cursor: int = 0
    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    current_batch: int = 0
    options: dict[str, Any] = field(default_factory=dict)
    errors: list[ItemError] = field(default_factory=list)
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: int = 0

    @classmethod
    def idle(cls, kind: str) -> "BatchJobState":
        return cls(kind=kind)

    @property
    def done(self) -> int:
        """Items the sweep has moved past, whatever their outcome."""
        return self.processed + self.skipped + self.failed

    @property
    def batch_size(self) -> int:
        return max(int(self.options.get("batch_size", DEFAULT_BATCH_SIZE)), 1)

    def record_error(self, item_id: int, message: str, limit: int = MAX_ERRORS) -> ItemError:
        error = ItemError(item_id=item_id, error=message)
        self.errors.append(error)
        if len(self.errors) > limit:
            del self.errors[: len(self.errors) - limit]
        return error

    def touch(self) -> None:
        self.updated_at = datetime.utcnow().isoformat()

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "status": self.status.value,
            "cursor": self.cursor,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "current_batch": self.current_batch,
            "options": dict(self.options),
            "errors": [error.to_dict() for error in self.errors],
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BatchJobState":
        try:
            status = BatchStatus(data.get("status", "idle"))
        except ValueError:
            status = BatchStatus.IDLE
        return cls(
            kind=str(data["kind"]),
            status=status,
            cursor=int(data.get("cursor", 0)),
            total=int(data.get("total", 0)),
            processed=int(data.get("processed", 0)),
            failed=int(data.get("failed", 0)),
            skipped=int(data.get("skipped", 0)),
            current_batch=int(data.get("current_batch", 0)),
            options=dict(data.get("options") or {}),
            errors=[
                ItemError(item_id=int(entry["item_id"]), error=str(entry.get("error", "")))
                for entry in data.get("errors") or []
            ],
            started_at=data.get("started_at"),
            updated_at=data.get("updated_at"),
            version=int(data.get("version", 0)),
        )


@dataclass(frozen=True)
class ItemResult:
    """Outcome of processing one item."""

    success: bool
    skipped: bool = False
    error: Optional[str] = None
    action: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, action: Optional[str] = None, **details: Any) -> "ItemResult":
        return cls(success=True, action=action, details=details)

    @classmethod
    def skip(cls, action: Optional[str] = None, **details: Any) -> "ItemResult":
        return cls(success=True, skipped=True, action=action, details=details)

    @classmethod
    def fail(cls, error: str, **details: Any) -> "ItemResult":
        return cls(success=False, error=error, details=details)


@dataclass
class BatchResult:
    """What one ``process_batch`` call did."""

    state: BatchJobState
    complete: bool = False
    batch_processed: int = 0
    batch_failed: int = 0
    batch_skipped: int = 0
    batch_errors: list[ItemError] = field(default_factory=list)
    actions: dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "state": self.state.to_dict(),
            "complete": self.complete,
            "batch_processed": self.batch_processed,
            "batch_failed": self.batch_failed,
            "batch_skipped": self.batch_skipped,
            "batch_errors": [error.to_dict() for error in self.batch_errors],
            "actions": {str(item_id): action for item_id, action in self.actions.items()},
        }
