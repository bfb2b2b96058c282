"""
Aggregate sync status shown on dashboards and returned by analysis calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class SyncStatus:
    """Counts describing how far the registry and the remote store agree."""

    total_attachments: int = 0
    migrated: int = 0
    pending: int = 0
    remote_files: int = 0
    integrity_issues: int = 0
    orphans: int = 0
    local_files_available: int = 0
    remove_local_enabled: bool = False
    last_sync_at: Optional[str] = None
    estimated: bool = False
    remote_bytes: int = 0
    total_images: int = 0
    optimized_images: int = 0
    pending_optimization: int = 0
    total_bytes_saved: int = 0
    original_bytes: int = 0
    suggested_actions: list[dict[str, Any]] = field(default_factory=list)
    overall_status: str = "unknown"

    def __post_init__(self) -> None:
        self.overall_status = determine_overall_status(
            self.total_attachments, self.migrated, self.pending, self.integrity_issues
        )
        self.suggested_actions = suggest_actions(
            pending=self.pending,
            integrity_issues=self.integrity_issues,
            orphans=self.orphans,
            local_files_available=self.local_files_available,
            pending_optimization=self.pending_optimization,
        )

    @property
    def sync_percentage(self) -> int:
        if self.total_attachments <= 0:
            return 0
        return int(round(self.migrated / self.total_attachments * 100))

    @property
    def optimization_percentage(self) -> int:
        if self.total_images <= 0:
            return 0
        return int(round(self.optimized_images / self.total_images * 100))

    @property
    def average_savings_percent(self) -> float:
        if self.original_bytes <= 0:
            return 0.0
        return round(self.total_bytes_saved / self.original_bytes * 100, 1)

    @property
    def primary_action(self) -> Optional[dict[str, Any]]:
        return self.suggested_actions[0] if self.suggested_actions else None

    @property
    def has_pending_work(self) -> bool:
        return self.pending > 0 or self.integrity_issues > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_attachments": self.total_attachments,
            "migrated": self.migrated,
            "pending": self.pending,
            "remote_files": self.remote_files,
            "remote_bytes": self.remote_bytes,
            "integrity_issues": self.integrity_issues,
            "orphans": self.orphans,
            "local_files_available": self.local_files_available,
            "remove_local_enabled": self.remove_local_enabled,
            "last_sync_at": self.last_sync_at,
            "estimated": self.estimated,
            "overall_status": self.overall_status,
            "sync_percentage": self.sync_percentage,
            "suggested_actions": list(self.suggested_actions),
            "optimization": {
                "total_images": self.total_images,
                "optimized_images": self.optimized_images,
                "pending_optimization": self.pending_optimization,
                "optimization_percentage": self.optimization_percentage,
                "total_bytes_saved": self.total_bytes_saved,
                "average_savings_percent": self.average_savings_percent,
            },
        }


def determine_overall_status(total: int, migrated: int, pending: int, integrity_issues: int) -> str:
    if integrity_issues > 0:
        return "integrity_issues"
    if pending > 0:
        return "pending_sync"
    if total > 0 and migrated == total:
        return "synced"
    if migrated == 0:
        return "not_started"
    return "partial"


def suggest_actions(
    pending: int,
    integrity_issues: int,
    orphans: int,
    local_files_available: int,
    pending_optimization: int = 0,
) -> list[dict[str, Any]]:
    """Remediation steps, most severe first."""
    actions: list[dict[str, Any]] = []
    if integrity_issues > 0:
        actions.append(
            {
                "type": "integrity_fix",
                "priority": "high",
                "title": "Fix integrity issues",
                "description": f"{integrity_issues} files marked as migrated but not found on remote storage.",
                "count": integrity_issues,
                "can_auto_fix": local_files_available > 0,
            }
        )
    if pending > 0 and pending_optimization > 0:
        actions.append(
            {
                "type": "optimize_before_sync",
                "priority": "high",
                "title": "Optimize images before sync",
                "description": f"{pending_optimization} images not optimized yet; optimizing first saves bandwidth and storage.",
                "count": pending_optimization,
                "can_auto_fix": True,
            }
        )
    if pending > 0:
        actions.append(
            {
                "type": "sync",
                "priority": "medium",
                "title": "Sync pending files",
                "description": f"{pending} files waiting to be uploaded.",
                "count": pending,
                "can_auto_fix": True,
            }
        )
    if orphans > 0:
        actions.append(
            {
                "type": "cleanup_orphans",
                "priority": "low",
                "title": "Clean up orphan files",
                "description": f"{orphans} remote files without a matching attachment.",
                "count": orphans,
                "can_auto_fix": True,
            }
        )
    return actions
