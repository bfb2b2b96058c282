"""
Resumable, cursor-driven batch engine shared by every sweep kind.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Optional

from database import DatabaseManager
from utils import ResourceMonitor

from .errors import (
    AlreadyRunning,
    ItemProcessingError,
    NotPaused,
    NotRunning,
    PermanentConfigurationError,
    ScanFailure,
    StateConflict,
    TransientNetworkError,
)
from .models import (
    DEFAULT_BATCH_SIZE,
    MAX_ERRORS,
    SWEEP_KINDS,
    BatchJobState,
    BatchResult,
    BatchStatus,
    ItemResult,
)
from .processor import ItemProcessor

DEFAULT_MAX_RETRIES = 5


class BatchJobController:
    """Drive one sweep kind through start, batch, pause/resume and stop.

    Every call is synchronous and bounded: ``process_batch`` handles at most
    ``batch_size`` items and writes the state once. The state row is written
    with a version compare-and-swap, so a second process advancing the same
    sweep gets ``StateConflict`` instead of silently double-advancing.
    """

    def __init__(
        self,
        kind: str,
        db: DatabaseManager,
        processor: ItemProcessor,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_errors: int = MAX_ERRORS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        resource_monitor: Optional[ResourceMonitor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if kind not in SWEEP_KINDS:
            raise ValueError(f"Unknown sweep kind: {kind}")
        self.kind = kind
        self.db = db
        self.processor = processor
        self.default_batch_size = max(int(default_batch_size), 1)
        self.max_errors = max_errors
        self.max_retries = max_retries
        self.resource_monitor = resource_monitor
        self.logger = logger or logging.getLogger("media_offload")
        self.performance_logger = logging.getLogger("media_offload.performance")
        self._lock = threading.RLock()

    def get_status(self) -> BatchJobState:
        """Read-only snapshot of the persisted state."""
        payload = self.db.load_sweep_state(self.kind)
        if not payload:
            return BatchJobState.idle(self.kind)
        return BatchJobState.from_dict(payload)

    def start(self, options: Optional[dict[str, Any]] = None, resume: bool = False) -> BatchJobState:
        with self._lock:
            current = self.get_status()
            if current.status.active:
                if not resume:
                    raise AlreadyRunning(self.kind, current.status.value)
                if current.status is BatchStatus.PAUSED:
                    current.status = BatchStatus.RUNNING
                    current.touch()
                    current = self._save(current)
                    self.logger.info("Resumed %s sweep at cursor %s", self.kind, current.cursor)
                return current

            merged = {"batch_size": self.default_batch_size}
            merged.update(self.processor.default_options())
            merged.update(options or {})
            self.processor.on_start(merged)
            total = self.processor.count(merged)
            now = datetime.utcnow().isoformat()
            state = BatchJobState(
                kind=self.kind,
                status=BatchStatus.RUNNING,
                total=total,
                options=merged,
                started_at=now,
                updated_at=now,
                version=current.version,
            )
            state = self._save(state)
            self.db.record_history("sweep_started", details={"kind": self.kind, "total": total, "options": merged})
            self.logger.info("Started %s sweep: total=%s batch_size=%s", self.kind, total, state.batch_size)
            return state

    def process_batch(self) -> BatchResult:
        with self._lock:
            state = self.get_status()
            if state.status is not BatchStatus.RUNNING:
                return BatchResult(state=state, complete=False)

            started = time.monotonic()
            options = state.options
            self.processor.before_batch(options)
            items = self.processor.fetch(options, state.cursor, state.batch_size)
            result = BatchResult(state=state)

            for item in items:
                if self.resource_monitor is not None:
                    self.resource_monitor.throttle()
                outcome = self._run_item(item, options)
                if outcome.success:
                    if outcome.skipped:
                        state.skipped += 1
                        result.batch_skipped += 1
                    else:
                        state.processed += 1
                        result.batch_processed += 1
                else:
                    message = outcome.error or "Unknown error"
                    state.failed += 1
                    result.batch_failed += 1
                    result.batch_errors.append(state.record_error(item.id, message, self.max_errors))
                    self.db.record_failed_operation(self.kind, item.id, item.file_path, message)
                if outcome.action:
                    result.actions[item.id] = outcome.action
                state.cursor = item.id

            if items:
                state.current_batch += 1
            if not items or state.done >= state.total:
                state.status = BatchStatus.COMPLETED
                result.complete = True
            state.touch()
            result.state = self._save(state)

            elapsed = time.monotonic() - started
            self.performance_logger.info(
                "%s batch %s: items=%s processed=%s failed=%s skipped=%s seconds=%.3f",
                self.kind,
                state.current_batch,
                len(items),
                result.batch_processed,
                result.batch_failed,
                result.batch_skipped,
                elapsed,
            )
            if result.complete:
                self.db.record_history(
                    "sweep_completed",
                    details={
                        "kind": self.kind,
                        "processed": state.processed,
                        "failed": state.failed,
                        "skipped": state.skipped,
                    },
                )
                self.logger.info(
                    "Completed %s sweep: processed=%s failed=%s skipped=%s",
                    self.kind,
                    state.processed,
                    state.failed,
                    state.skipped,
                )
            return result

    def pause(self) -> BatchJobState:
        with self._lock:
            state = self.get_status()
            if state.status is not BatchStatus.RUNNING:
                raise NotRunning(self.kind, state.status.value)
            state.status = BatchStatus.PAUSED
            state.touch()
            self.logger.info("Paused %s sweep at cursor %s", self.kind, state.cursor)
            return self._save(state)

    def resume(self) -> BatchJobState:
        with self._lock:
            state = self.get_status()
            if state.status is not BatchStatus.PAUSED:
                raise NotPaused(self.kind, state.status.value)
            state.status = BatchStatus.RUNNING
            state.touch()
            self.logger.info("Resumed %s sweep at cursor %s", self.kind, state.cursor)
            return self._save(state)

    def stop(self) -> BatchJobState:
        with self._lock:
            current = self.get_status()
            state = BatchJobState.idle(self.kind)
            state.version = current.version
            state.touch()
            state = self._save(state)
            self.processor.on_stop()
            if current.status.active:
                self.db.record_history(
                    "sweep_stopped",
                    details={"kind": self.kind, "cursor": current.cursor, "processed": current.processed},
                )
                self.logger.info("Stopped %s sweep at cursor %s", self.kind, current.cursor)
            return state

    def retry_failed(self) -> dict[str, int]:
        """Re-run every queued failure of this kind, independent of the cursor."""
        with self._lock:
            state = self.get_status()
            options = {"batch_size": self.default_batch_size}
            options.update(self.processor.default_options())
            options.update(state.options)
            entries = self.db.list_failed_operations(self.kind)
            counts = {"retried": 0, "succeeded": 0, "failed": 0, "abandoned": 0}
            if not entries:
                return counts
            self.processor.before_batch(options)
            for entry in entries:
                item_id = entry["attachment_id"]
                if entry["retry_count"] >= self.max_retries:
                    self.logger.warning(
                        "Abandoning %s item %s after %s attempts: %s",
                        self.kind,
                        item_id,
                        entry["retry_count"],
                        entry["error_message"],
                    )
                    self.db.remove_failed_operation(self.kind, item_id)
                    counts["abandoned"] += 1
                    continue
                item = self.processor.get_item(item_id)
                if item is None:
                    self.db.remove_failed_operation(self.kind, item_id)
                    continue
                counts["retried"] += 1
                if self.resource_monitor is not None:
                    self.resource_monitor.throttle()
                outcome = self._run_item(item, options)
                if outcome.success:
                    self.db.remove_failed_operation(self.kind, item_id)
                    counts["succeeded"] += 1
                else:
                    self.db.record_failed_operation(
                        self.kind, item_id, item.file_path, outcome.error or "Unknown error"
                    )
                    counts["failed"] += 1
            self.logger.info(
                "Retried %s failures: succeeded=%s failed=%s abandoned=%s",
                self.kind,
                counts["succeeded"],
                counts["failed"],
                counts["abandoned"],
            )
            return counts

    def _run_item(self, item, options: dict[str, Any]) -> ItemResult:
        try:
            return self.processor.process(item, options)
        except (ItemProcessingError, TransientNetworkError) as exc:
            self.logger.warning("%s item %s failed: %s", self.kind, item.id, exc)
            return ItemResult.fail(str(exc))
        except OSError as exc:
            self.logger.warning("%s item %s failed: %s", self.kind, item.id, exc)
            return ItemResult.fail(str(exc))
        except (PermanentConfigurationError, ScanFailure):
            raise
        except Exception as exc:
            self.logger.exception("%s item %s failed unexpectedly", self.kind, item.id)
            return ItemResult.fail(f"{type(exc).__name__}: {exc}")

    def _save(self, state: BatchJobState) -> BatchJobState:
        expected = state.version
        if not self.db.save_sweep_state(self.kind, state.to_dict(), expected):
            raise StateConflict(self.kind, expected)
        state.version = expected + 1
        return state
