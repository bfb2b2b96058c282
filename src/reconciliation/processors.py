"""
Item processors for each sweep kind.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from PIL import Image

from batch.errors import ItemProcessingError, PermanentConfigurationError
from batch.models import ItemResult
from batch.processor import ItemProcessor
from database import AttachmentFilter, AttachmentRecord, DatabaseManager

from .engine import CloudReconciliationEngine

CLOUDSYNC_MODES = ("sync", "integrity", "full")


class CloudSyncProcessor(ItemProcessor):
    """Upload pending attachments, verify migrated ones, or both."""

    def __init__(self, engine: CloudReconciliationEngine, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(engine.db, logger)
        self.engine = engine

    def default_options(self) -> dict[str, Any]:
        return {"mode": "sync", "remove_local": self.engine.remove_local, "auto_fix": False}

    def item_filter(self, options: dict[str, Any]) -> AttachmentFilter:
        mode = _mode(options)
        if mode == "integrity":
            return AttachmentFilter.MIGRATED
        if mode == "full":
            return AttachmentFilter.ALL
        return AttachmentFilter.NOT_MIGRATED

    def on_start(self, options: dict[str, Any]) -> None:
        if _mode(options) in ("integrity", "full"):
            self.logger.info("Scanning remote storage for %s check", _mode(options))
            self.engine.remote_map(refresh=True)

    def before_batch(self, options: dict[str, Any]) -> None:
        if _mode(options) in ("integrity", "full"):
            self.engine.remote_map()

    def on_stop(self) -> None:
        self.engine.invalidate_remote_map()

    def process(self, item: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        mode = _mode(options)
        if mode == "integrity" or (mode == "full" and item.migrated):
            return self.engine.integrity_item(item, options)
        return self.engine.sync_item(item, options)


class MarkFoundProcessor(ItemProcessor):
    """Adopt remote objects that were uploaded outside the sweep machinery."""

    def __init__(self, engine: CloudReconciliationEngine, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(engine.db, logger)
        self.engine = engine

    def item_filter(self, options: dict[str, Any]) -> AttachmentFilter:
        if options.get("mode") == "mark_found":
            return AttachmentFilter.ALL
        return AttachmentFilter.NOT_MIGRATED

    def on_start(self, options: dict[str, Any]) -> None:
        self.engine.remote_map(refresh=True)

    def before_batch(self, options: dict[str, Any]) -> None:
        self.engine.remote_map()

    def on_stop(self) -> None:
        self.engine.invalidate_remote_map()

    def process(self, item: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        return self.engine.mark_found_item(item, options)


class MigrationProcessor(ItemProcessor):
    """Upload every attachment not yet on the remote."""

    def __init__(self, engine: CloudReconciliationEngine, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(engine.db, logger)
        self.engine = engine

    def default_options(self) -> dict[str, Any]:
        return {"remove_local": self.engine.remove_local}

    def item_filter(self, options: dict[str, Any]) -> AttachmentFilter:
        return AttachmentFilter.NOT_MIGRATED

    def process(self, item: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        return self.engine.sync_item(item, options)


class OptimizationProcessor(ItemProcessor):
    """Re-encode local JPEG and PNG originals when that saves enough space."""

    def __init__(
        self,
        db: DatabaseManager,
        uploads_root: Path,
        jpeg_quality: int = 82,
        min_savings_percent: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(db, logger)
        self.uploads_root = Path(uploads_root)
        self.jpeg_quality = jpeg_quality
        self.min_savings_percent = min_savings_percent

    def default_options(self) -> dict[str, Any]:
        return {"jpeg_quality": self.jpeg_quality, "min_savings_percent": self.min_savings_percent}

    def item_filter(self, options: dict[str, Any]) -> AttachmentFilter:
        return AttachmentFilter.UNOPTIMIZED

    def process(self, item: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        path = self.uploads_root / item.file_path
        if not path.is_file():
            if item.migrated:
                return ItemResult.skip("remote_only")
            raise ItemProcessingError("File does not exist locally", item_id=item.id)

        original_size = path.stat().st_size
        temp_path = path.with_name(f".{path.name}.optimizing")
        try:
            self._reencode(path, temp_path, item.mime_type, options)
            new_size = temp_path.stat().st_size
            saved = original_size - new_size
            savings_percent = (saved / original_size * 100) if original_size else 0.0
            if saved <= 0 or savings_percent < float(options.get("min_savings_percent", 0)):
                self.db.mark_optimized(item.id, original_size, 0)
                return ItemResult.skip("already_optimal", savings_percent=round(savings_percent, 1))
            os.replace(temp_path, path)
        finally:
            if temp_path.exists():
                temp_path.unlink()

        self.db.mark_optimized(item.id, new_size, saved)
        self.db.record_history(
            "optimized",
            attachment_id=item.id,
            file_path=item.file_path,
            size=new_size,
            details={"original_size": original_size, "bytes_saved": saved},
        )
        self.logger.info(
            "Optimized %s: %s -> %s bytes (%.1f%%)",
            item.file_path,
            original_size,
            new_size,
            savings_percent,
        )
        return ItemResult.ok("optimized", bytes_saved=saved)

    def _reencode(self, source: Path, target: Path, mime_type: Optional[str], options: dict[str, Any]) -> None:
        with Image.open(source) as image:
            if mime_type == "image/png":
                image.save(target, format="PNG", optimize=True)
                return
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(
                target,
                format="JPEG",
                quality=int(options.get("jpeg_quality", self.jpeg_quality)),
                optimize=True,
                progressive=True,
            )


def _mode(options: dict[str, Any]) -> str:
    mode = str(options.get("mode", "sync"))
    if mode not in CLOUDSYNC_MODES:
        raise PermanentConfigurationError(f"Unknown cloudsync mode: {mode}")
    return mode
