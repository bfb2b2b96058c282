"""
Uniform request surface over the sweep controllers.

Every method returns a JSON-ready dict with a ``success`` flag. Sweep errors
become ``{"success": False, "message": ..., "error_type": ...}``; anything
unexpected is logged with its traceback and reported as ``internal``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from batch import BatchJobController, PermanentConfigurationError, SweepError
from batch.models import SWEEP_KINDS, BatchJobState
from config import AppConfig
from database import DatabaseManager
from reconciliation import (
    CloudReconciliationEngine,
    CloudSyncProcessor,
    MarkFoundProcessor,
    MigrationProcessor,
    OptimizationProcessor,
)
from storage import ObjectStorage
from utils import ResourceMonitor


class SweepService:
    """Dispatch control calls to the controller for each sweep kind."""

    def __init__(
        self,
        controllers: dict[str, BatchJobController],
        engine: Optional[CloudReconciliationEngine] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.controllers = controllers
        self.engine = engine
        self.logger = logger or logging.getLogger("media_offload")

    def handle(self, kind: str, action: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Route ``action`` for ``kind``; unknown kinds and actions are rejected."""
        if kind not in self.controllers:
            return _failure(f"Unknown sweep kind: {kind}", "not_found")
        action = action.replace("-", "_")
        if action == "status":
            action = "get_status"
        if action not in ("start", "process_batch", "pause", "resume", "stop", "get_status", "retry_failed"):
            return _failure(f"Unknown action: {action}", "not_found")
        if action == "start":
            return self.start(kind, payload or {})
        return getattr(self, action)(kind)

    def start(self, kind: str, options: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        options = dict(options or {})
        resume = bool(options.pop("resume", False))
        controller = self.controllers[kind]
        return self._guard(
            f"{kind}.start",
            lambda: _state_response(controller.start(options, resume=resume), message=f"{kind} sweep started"),
        )

    def process_batch(self, kind: str) -> dict[str, Any]:
        controller = self.controllers[kind]

        def run() -> dict[str, Any]:
            result = controller.process_batch()
            response = {"success": True}
            response.update(result.to_dict())
            if result.complete:
                stats = self._stats(kind)
                if stats is not None:
                    response["stats"] = stats
            return response

        return self._guard(f"{kind}.process_batch", run)

    def pause(self, kind: str) -> dict[str, Any]:
        controller = self.controllers[kind]
        return self._guard(f"{kind}.pause", lambda: _state_response(controller.pause(), message=f"{kind} sweep paused"))

    def resume(self, kind: str) -> dict[str, Any]:
        controller = self.controllers[kind]
        return self._guard(
            f"{kind}.resume", lambda: _state_response(controller.resume(), message=f"{kind} sweep resumed")
        )

    def stop(self, kind: str) -> dict[str, Any]:
        controller = self.controllers[kind]
        return self._guard(f"{kind}.stop", lambda: _state_response(controller.stop(), message=f"{kind} sweep stopped"))

    def get_status(self, kind: str) -> dict[str, Any]:
        controller = self.controllers[kind]

        def run() -> dict[str, Any]:
            response = _state_response(controller.get_status())
            response["failed_queue"] = controller.db.count_failed_operations(kind)
            return response

        return self._guard(f"{kind}.status", run)

    def retry_failed(self, kind: str) -> dict[str, Any]:
        controller = self.controllers[kind]

        def run() -> dict[str, Any]:
            counts = controller.retry_failed()
            response = _state_response(controller.get_status())
            response["retry"] = counts
            return response

        return self._guard(f"{kind}.retry_failed", run)

    # Cloud sync extras

    def analyze(self, deep: bool = False) -> dict[str, Any]:
        def run() -> dict[str, Any]:
            engine = self._require_engine()
            status = engine.analyze_deep() if deep else engine.analyze()
            return {"success": True, "stats": status.to_dict()}

        return self._guard("cloudsync.analyze", run)

    def discrepancies(self, limit: int = 100) -> dict[str, Any]:
        return self._guard(
            "cloudsync.discrepancies",
            lambda: {"success": True, "discrepancies": self._require_engine().get_discrepancies(limit=limit)},
        )

    def fix_integrity(self) -> dict[str, Any]:
        controller = self.controllers["cloudsync"]
        return self._guard(
            "cloudsync.fix_integrity",
            lambda: _state_response(
                self._require_engine().fix_integrity(controller), message="Integrity fix started"
            ),
        )

    def clear_metadata(self) -> dict[str, Any]:
        def run() -> dict[str, Any]:
            cleared = self._require_engine().clear_all_metadata()
            return {"success": True, "cleared": cleared, "message": f"Cleared metadata from {cleared} attachments"}

        return self._guard("cloudsync.clear_metadata", run)

    def reconcile_single(self, attachment_id: int) -> dict[str, Any]:
        return self._guard(
            "reconciliation.single", lambda: self._require_engine().reconcile_single(attachment_id)
        )

    def _stats(self, kind: str) -> Optional[dict[str, Any]]:
        if self.engine is None or kind not in ("cloudsync", "reconciliation", "migration"):
            return None
        return self.engine.analyze().to_dict()

    def _require_engine(self) -> CloudReconciliationEngine:
        if self.engine is None:
            raise PermanentConfigurationError("Reconciliation engine is not configured.")
        return self.engine

    def _guard(self, context: str, call: Callable[[], dict[str, Any]]) -> dict[str, Any]:
        try:
            return call()
        except SweepError as exc:
            self.logger.warning("%s failed (%s): %s", context, exc.error_type, exc)
            return _failure(str(exc), exc.error_type)
        except Exception:
            self.logger.exception("%s failed unexpectedly", context)
            return _failure("Internal error; see the server log.", "internal")


def build_service(
    config: AppConfig,
    db: DatabaseManager,
    storage: ObjectStorage,
    logger: Optional[logging.Logger] = None,
) -> SweepService:
    """Wire one controller per sweep kind from configuration."""
    engine = CloudReconciliationEngine.from_config(config, db, storage, logger=logger)
    processors = {
        "migration": MigrationProcessor(engine, logger=logger),
        "optimization": OptimizationProcessor(
            db,
            uploads_root=engine.uploads_root,
            jpeg_quality=int(config.get("optimization", "jpeg_quality", default=82)),
            min_savings_percent=float(config.get("optimization", "min_savings_percent", default=5.0)),
            logger=logger,
        ),
        "reconciliation": MarkFoundProcessor(engine, logger=logger),
        "cloudsync": CloudSyncProcessor(engine, logger=logger),
    }
    monitor = ResourceMonitor.from_config(config)
    controllers = {
        kind: BatchJobController(
            kind,
            db,
            processors[kind],
            default_batch_size=int(config.get("batch", "default_batch_size", default=25)),
            max_errors=int(config.get("batch", "max_errors", default=50)),
            max_retries=int(config.get("batch", "max_retries", default=5)),
            resource_monitor=monitor if monitor.enabled else None,
            logger=logger,
        )
        for kind in SWEEP_KINDS
    }
    return SweepService(controllers, engine=engine, logger=logger)


def _state_response(state: BatchJobState, message: Optional[str] = None) -> dict[str, Any]:
    response: dict[str, Any] = {"success": True, "state": state.to_dict()}
    if message:
        response["message"] = message
    return response


def _failure(message: str, error_type: str) -> dict[str, Any]:
    return {"success": False, "message": message, "error_type": error_type}
