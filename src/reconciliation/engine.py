"""
Reconciliation between the attachment registry and the remote object listing.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional

from batch.errors import (
    ItemProcessingError,
    PermanentConfigurationError,
    ScanFailure,
    SweepError,
)
from batch.models import ItemResult
from config import AppConfig
from database import AttachmentFilter, AttachmentRecord, DatabaseManager
from storage import ObjectStorage, RemoteObject, build_key, extract_relative_path, is_thumbnail_key

from .status import SyncStatus

STORAGE_STATS_KEY = "storage_stats"
SYNC_STATUS_KEY = "sync_status"
DISCREPANCY_LIMIT = 100
LIST_PAGE_SIZE = 1000
REMOTE_MAP_TTL = 3600.0
FIX_INTEGRITY_OPTIONS = {"mode": "integrity", "auto_fix": True, "batch_size": 50}

NOT_ON_REMOTE = "not_on_remote"
NOT_MARKED_MIGRATED = "not_marked_migrated"
ORPHAN_REMOTE = "orphan_remote"


@dataclass(frozen=True)
class DiscrepancyRecord:
    """One mismatch between the registry and the remote listing."""

    kind: str
    relative_path: str
    attachment: Optional[AttachmentRecord] = None
    remote: Optional[RemoteObject] = None
    local_exists: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "file": self.relative_path}
        if self.attachment is not None:
            payload["id"] = self.attachment.id
        if self.remote is not None:
            payload["remote_key"] = self.remote.key
            payload["size"] = self.remote.size
        if self.local_exists is not None:
            payload["local_exists"] = self.local_exists
        return payload


@dataclass
class Reconciliation:
    """Three-way classification of attachments against a remote map.

    ``matched`` holds every attachment whose path is present remotely,
    migrated or not, so that ``orphan_remote`` and the remote side of
    ``matched`` together cover the whole listing.
    """

    not_on_remote: list[DiscrepancyRecord] = field(default_factory=list)
    not_marked_migrated: list[DiscrepancyRecord] = field(default_factory=list)
    orphan_remote: list[DiscrepancyRecord] = field(default_factory=list)
    matched: dict[str, tuple[AttachmentRecord, RemoteObject]] = field(default_factory=dict)
    attachments_seen: int = 0
    migrated_seen: int = 0
    local_files_available: int = 0

    @property
    def integrity_issues(self) -> int:
        return len(self.not_on_remote)

    def summary(self) -> dict[str, int]:
        return {
            "attachments": self.attachments_seen,
            "matched": len(self.matched),
            NOT_ON_REMOTE: len(self.not_on_remote),
            NOT_MARKED_MIGRATED: len(self.not_marked_migrated),
            ORPHAN_REMOTE: len(self.orphan_remote),
        }


def classify(
    attachments: Iterable[AttachmentRecord],
    remote_map: dict[str, RemoteObject],
    local_exists: Optional[Callable[[AttachmentRecord], bool]] = None,
) -> Reconciliation:
    """Classify attachments against a remote map keyed by relative path."""
    result = Reconciliation()
    for attachment in attachments:
        result.attachments_seen += 1
        remote = remote_map.get(attachment.file_path)
        exists = local_exists(attachment) if local_exists is not None else None
        if exists:
            result.local_files_available += 1
        if attachment.migrated:
            result.migrated_seen += 1
        if remote is not None:
            result.matched[attachment.file_path] = (attachment, remote)
            if not attachment.migrated:
                result.not_marked_migrated.append(
                    DiscrepancyRecord(
                        kind=NOT_MARKED_MIGRATED,
                        relative_path=attachment.file_path,
                        attachment=attachment,
                        remote=remote,
                    )
                )
        elif attachment.migrated:
            result.not_on_remote.append(
                DiscrepancyRecord(
                    kind=NOT_ON_REMOTE,
                    relative_path=attachment.file_path,
                    attachment=attachment,
                    local_exists=exists,
                )
            )
    for relative_path, remote in remote_map.items():
        if relative_path not in result.matched:
            result.orphan_remote.append(
                DiscrepancyRecord(kind=ORPHAN_REMOTE, relative_path=relative_path, remote=remote)
            )
    return result


class CloudReconciliationEngine:
    """Scan the remote store, compare it with the registry and repair drift."""

    def __init__(
        self,
        db: DatabaseManager,
        storage: ObjectStorage,
        uploads_root: Path,
        base_path: str = "",
        remove_local: bool = False,
        remote_map_ttl: float = REMOTE_MAP_TTL,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.db = db
        self.storage = storage
        self.uploads_root = Path(uploads_root)
        self.base_path = base_path.strip("/") if base_path else ""
        self.remove_local = remove_local
        self.logger = logger or logging.getLogger("media_offload")
        self.remote_map_ttl = remote_map_ttl
        self._remote_map: Optional[dict[str, RemoteObject]] = None
        self._remote_map_loaded_at = 0.0

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        db: DatabaseManager,
        storage: ObjectStorage,
        logger: Optional[logging.Logger] = None,
    ) -> "CloudReconciliationEngine":
        return cls(
            db=db,
            storage=storage,
            uploads_root=config.resolve_path("paths", "uploads", default="uploads"),
            base_path=str(config.get("storage", "base_path", default="") or ""),
            remove_local=bool(config.get("storage", "remove_local", default=False)),
            remote_map_ttl=float(config.get("storage", "remote_cache_ttl_seconds", default=REMOTE_MAP_TTL)),
            logger=logger,
        )

    # Remote listing

    @property
    def remote_prefix(self) -> str:
        return f"{self.base_path}/" if self.base_path else ""

    def iter_remote_objects(self) -> Iterator[tuple[str, RemoteObject]]:
        """Lazily yield ``(relative_path, object)`` for every original on the remote.

        Pages are fetched on demand and thumbnails skipped; calling again
        starts a new listing.
        """
        try:
            for remote in self.storage.iter_objects(self.remote_prefix, LIST_PAGE_SIZE):
                if is_thumbnail_key(remote.key):
                    continue
                relative_path = extract_relative_path(remote.key, self.base_path)
                if relative_path:
                    yield relative_path, remote
        except PermanentConfigurationError:
            raise
        except SweepError as exc:
            self.logger.error("Remote listing failed: %s", exc)
            raise ScanFailure(f"Remote listing failed: {exc}") from exc

    def scan_remote(self) -> dict[str, RemoteObject]:
        """Materialize the full listing; memory grows with the object count."""
        remote_map = dict(self.iter_remote_objects())
        self.logger.info("Remote scan complete: %s originals", len(remote_map))
        return remote_map

    def remote_map(self, refresh: bool = False) -> dict[str, RemoteObject]:
        """Cached remote map, rescanned once older than ``remote_map_ttl`` seconds."""
        expired = time.monotonic() - self._remote_map_loaded_at >= self.remote_map_ttl
        if refresh or self._remote_map is None or expired:
            self._remote_map = self.scan_remote()
            self._remote_map_loaded_at = time.monotonic()
        return self._remote_map

    def invalidate_remote_map(self) -> None:
        self._remote_map = None

    def _remember_upload(self, relative_path: str, key: str, size: int) -> None:
        if self._remote_map is not None:
            self._remote_map[relative_path] = RemoteObject(key=key, size=size)

    # Analysis

    def local_path(self, attachment: AttachmentRecord) -> Path:
        return self.uploads_root / attachment.file_path

    def local_exists(self, attachment: AttachmentRecord) -> bool:
        return self.local_path(attachment).is_file()

    def reconcile(self, refresh: bool = False) -> Reconciliation:
        remote_map = self.remote_map(refresh=refresh)
        return classify(self.db.iter_attachments(AttachmentFilter.ALL), remote_map, self.local_exists)

    def analyze_deep(self) -> SyncStatus:
        """Full scan and exact classification; refreshes the cached stats."""
        self.logger.info("Starting deep analysis with remote scan")
        remote_map = self.remote_map(refresh=True)
        reconciliation = classify(
            self.db.iter_attachments(AttachmentFilter.ALL), remote_map, self.local_exists
        )
        now = datetime.utcnow().isoformat()
        remote_bytes = sum(remote.size for remote in remote_map.values())
        self.db.set_cache_value(
            STORAGE_STATS_KEY,
            {
                "files": len(remote_map),
                "original_files": len(remote_map),
                "size": remote_bytes,
                "synced_at": now,
            },
        )
        optimization = self.db.optimization_counts()
        status = SyncStatus(
            total_attachments=reconciliation.attachments_seen,
            migrated=reconciliation.migrated_seen,
            pending=reconciliation.attachments_seen - reconciliation.migrated_seen,
            remote_files=len(remote_map),
            remote_bytes=remote_bytes,
            integrity_issues=reconciliation.integrity_issues,
            orphans=len(reconciliation.orphan_remote),
            local_files_available=reconciliation.local_files_available,
            remove_local_enabled=self.remove_local,
            last_sync_at=now,
            estimated=False,
            **_optimization_fields(optimization),
        )
        self.db.set_cache_value(
            SYNC_STATUS_KEY,
            {
                "integrity_issues": status.integrity_issues,
                "pending": status.pending,
                "overall_status": status.overall_status,
                "last_check": now,
            },
        )
        self.logger.info(
            "Deep analysis complete: total=%s migrated=%s pending=%s issues=%s orphans=%s",
            status.total_attachments,
            status.migrated,
            status.pending,
            status.integrity_issues,
            status.orphans,
        )
        return status

    def analyze(self) -> SyncStatus:
        """Cheap status from cached counts; remote-side numbers are estimates."""
        counts = self.db.migration_counts()
        stats = self.db.get_cache_value(STORAGE_STATS_KEY, default={}) or {}
        remote_files = int(stats.get("original_files", stats.get("files", 0)) or 0)
        migrated = counts["migrated"]
        integrity_issues = 0
        if remote_files > 0 and migrated > remote_files:
            integrity_issues = migrated - remote_files
        orphans = remote_files - migrated if remote_files > migrated else 0
        local_available = sum(
            1 for attachment in self.db.iter_attachments(AttachmentFilter.ALL) if self.local_exists(attachment)
        )
        return SyncStatus(
            total_attachments=counts["total"],
            migrated=migrated,
            pending=counts["pending"],
            remote_files=remote_files,
            remote_bytes=int(stats.get("size", 0) or 0),
            integrity_issues=integrity_issues,
            orphans=orphans,
            local_files_available=local_available,
            remove_local_enabled=self.remove_local,
            last_sync_at=stats.get("synced_at"),
            estimated=True,
            **_optimization_fields(self.db.optimization_counts()),
        )

    def get_discrepancies(self, limit: int = DISCREPANCY_LIMIT) -> dict[str, Any]:
        """Detailed discrepancy lists, the first ``limit`` of each kind."""
        remote_map = self.remote_map()
        reconciliation = classify(
            self.db.iter_attachments(AttachmentFilter.ALL), remote_map, self.local_exists
        )
        orphans = []
        for record in reconciliation.orphan_remote[:limit]:
            entry = record.to_dict()
            entry["url"] = self.storage.url_for(record.remote.key)
            orphans.append(entry)
        return {
            NOT_ON_REMOTE: [record.to_dict() for record in reconciliation.not_on_remote[:limit]],
            f"{NOT_ON_REMOTE}_total": len(reconciliation.not_on_remote),
            NOT_MARKED_MIGRATED: [
                record.to_dict() for record in reconciliation.not_marked_migrated[:limit]
            ],
            f"{NOT_MARKED_MIGRATED}_total": len(reconciliation.not_marked_migrated),
            ORPHAN_REMOTE: orphans,
            f"{ORPHAN_REMOTE}_total": len(reconciliation.orphan_remote),
            "summary": {
                "remote_files_scanned": len(remote_map),
                "attachments": reconciliation.attachments_seen,
                "matched": len(reconciliation.matched),
            },
        }

    # Repairs

    def reconcile_single(self, attachment_id: int) -> dict[str, Any]:
        """Head-check one attachment and mark it migrated when found."""
        attachment = self.db.get_attachment(attachment_id)
        if attachment is None:
            return {"success": False, "error": f"Attachment {attachment_id} not found"}
        key = build_key(attachment.file_path, self.base_path)
        if not self.storage.exists(key):
            return {"success": True, "found": False}
        url = self.storage.url_for(key)
        self.db.mark_migrated(attachment.id, key, url, provider=self.storage.provider)
        return {"success": True, "found": True, "remote_key": key, "url": url}

    def clear_all_metadata(self) -> int:
        cleared = self.db.clear_all_migrations()
        self.db.delete_cache_value(SYNC_STATUS_KEY)
        self.invalidate_remote_map()
        self.logger.info("Cleared migration metadata from %s attachments", cleared)
        return cleared

    def fix_integrity(self, controller) -> Any:
        """Start an integrity sweep that repairs what it finds."""
        self.invalidate_remote_map()
        return controller.start(dict(FIX_INTEGRITY_OPTIONS))

    # Per-item work used by the sweep processors

    def sync_item(self, attachment: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        """Upload one attachment with its thumbnails and mark it migrated."""
        remove_local = bool(options.get("remove_local", self.remove_local))
        local_path = self.local_path(attachment)
        if not local_path.is_file():
            raise ItemProcessingError("File does not exist locally", item_id=attachment.id)

        size = local_path.stat().st_size
        key = build_key(attachment.file_path, self.base_path)
        upload = self.storage.upload(local_path, key, content_type=attachment.mime_type)
        self._remember_upload(attachment.file_path, upload.key, size)

        thumb_keys: dict[str, str] = {}
        uploaded_thumbs: list[Path] = []
        parent = Path(attachment.file_path).parent
        for thumbnail in attachment.thumbnails:
            thumb_path = local_path.parent / thumbnail
            if not thumb_path.is_file():
                continue
            try:
                thumb_upload = self.storage.upload(
                    thumb_path, build_key((parent / thumbnail).as_posix(), self.base_path)
                )
            except SweepError as exc:
                self.logger.warning("Thumbnail upload failed for %s: %s", thumb_path, exc)
                continue
            thumb_keys[thumbnail] = thumb_upload.key
            uploaded_thumbs.append(thumb_path)

        self.db.mark_migrated(
            attachment.id,
            upload.key,
            upload.url,
            provider=self.storage.provider,
            thumb_keys=thumb_keys,
        )
        self.db.record_history(
            "migrated",
            attachment_id=attachment.id,
            file_path=attachment.file_path,
            remote_key=upload.key,
            size=attachment.size,
            details={"thumbnails": len(thumb_keys)},
        )
        if remove_local:
            for path in [*uploaded_thumbs, local_path]:
                _remove_local(path, self.logger)
        self.logger.info("Synced %s -> %s", attachment.file_path, upload.key)
        return ItemResult.ok("uploaded", remote_key=upload.key, url=upload.url)

    def integrity_item(self, attachment: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        """Verify one migrated attachment against the cached remote map."""
        remote = self.remote_map().get(attachment.file_path)
        if remote is not None:
            if attachment.remote_key != remote.key or not attachment.remote_url:
                url = self.storage.url_for(remote.key)
                self.db.mark_migrated(attachment.id, remote.key, url, provider=self.storage.provider)
                return ItemResult.ok("key_fixed", remote_key=remote.key)
            return ItemResult.ok("verified", remote_key=remote.key)

        if not options.get("auto_fix"):
            return ItemResult.skip("reported")

        local_path = self.local_path(attachment)
        if local_path.is_file():
            key = build_key(attachment.file_path, self.base_path)
            upload = self.storage.upload(local_path, key, content_type=attachment.mime_type)
            self._remember_upload(attachment.file_path, upload.key, local_path.stat().st_size)
            self.db.mark_migrated(attachment.id, upload.key, upload.url, provider=self.storage.provider)
            self.db.record_history(
                "integrity_fixed",
                attachment_id=attachment.id,
                file_path=attachment.file_path,
                remote_key=upload.key,
                size=attachment.size,
                details={"source": "reupload"},
            )
            self.logger.info("Re-uploaded %s during integrity fix", attachment.file_path)
            return ItemResult.ok("reuploaded", remote_key=upload.key)

        self.db.clear_migration(attachment.id)
        self.db.record_history(
            "metadata_cleared",
            attachment_id=attachment.id,
            file_path=attachment.file_path,
            remote_key=attachment.remote_key,
            details={"reason": "missing on remote, no local copy"},
        )
        self.logger.warning("Cleared metadata for %s: missing remotely with no local copy", attachment.file_path)
        return ItemResult.ok("metadata_cleared")

    def mark_found_item(self, attachment: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        """Mark an attachment migrated when its original is already on the remote."""
        remote = self.remote_map().get(attachment.file_path)
        if remote is not None:
            url = self.storage.url_for(remote.key)
            self.db.mark_migrated(attachment.id, remote.key, url, provider=self.storage.provider)
            self.db.record_history(
                "migrated",
                attachment_id=attachment.id,
                file_path=attachment.file_path,
                remote_key=remote.key,
                size=remote.size,
                details={"source": "reconciliation"},
            )
            return ItemResult.ok("marked", remote_key=remote.key)
        if options.get("mode") == "mark_found" and (attachment.migrated or attachment.remote_key):
            self.db.clear_migration(attachment.id)
            return ItemResult.skip("metadata_cleared")
        return ItemResult.skip("not_found")


def _optimization_fields(counts: dict[str, int]) -> dict[str, int]:
    return {
        "total_images": counts["total_images"],
        "optimized_images": counts["optimized_images"],
        "pending_optimization": counts["pending_optimization"],
        "total_bytes_saved": counts["total_bytes_saved"],
        "original_bytes": counts["original_bytes"],
    }


def _remove_local(path: Path, logger: logging.Logger) -> None:
    try:
        os.remove(path)
    except OSError as exc:
        logger.warning("Could not remove local copy %s: %s", path, exc)
