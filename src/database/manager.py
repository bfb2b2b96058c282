"""
SQLite database access layer for the attachment registry and sweep state.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from .schema import create_databases

OPTIMIZABLE_MIME_TYPES = ("image/jpeg", "image/png")

_ATTACHMENT_COLUMNS = (
    "id, file_path, migrated, remote_key, remote_url, size, mime_type, "
    "thumbnails_json, thumb_keys_json, optimized, bytes_saved"
)


class AttachmentFilter(str, Enum):
    """Predicates a sweep can scope its item source to."""

    ALL = "all"
    MIGRATED = "migrated"
    NOT_MIGRATED = "not_migrated"
    UNOPTIMIZED = "unoptimized"

    def where_clause(self) -> tuple[str, tuple]:
        if self is AttachmentFilter.MIGRATED:
            return "migrated = 1", ()
        if self is AttachmentFilter.NOT_MIGRATED:
            return "(migrated IS NULL OR migrated = 0)", ()
        if self is AttachmentFilter.UNOPTIMIZED:
            placeholders = ", ".join("?" for _ in OPTIMIZABLE_MIME_TYPES)
            return (
                f"(optimized IS NULL OR optimized = 0) AND mime_type IN ({placeholders})",
                OPTIMIZABLE_MIME_TYPES,
            )
        return "1 = 1", ()


@dataclass(frozen=True)
class AttachmentRecord:
    """Read-only view of one registry entry."""

    id: int
    file_path: str
    migrated: bool
    remote_key: Optional[str]
    size: int
    remote_url: Optional[str] = None
    mime_type: Optional[str] = None
    thumbnails: tuple[str, ...] = field(default_factory=tuple)
    thumb_keys: Dict[str, str] = field(default_factory=dict)
    optimized: bool = False
    bytes_saved: int = 0


class DatabaseManager:
    """Manage SQLite connections and common queries."""

    def __init__(self, db_paths: Dict[str, Path]) -> None:
        self.db_paths = db_paths
        self._registry_conn: Optional[sqlite3.Connection] = None
        self._state_conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> None:
        """Create database files and tables."""
        create_databases(self.db_paths)

    def connect(self) -> None:
        """Open database connections if they are not already open."""
        if self._registry_conn is None:
            self._registry_conn = sqlite3.connect(self.db_paths["registry"], check_same_thread=False)
            self._registry_conn.execute("PRAGMA journal_mode=WAL;")
        if self._state_conn is None:
            self._state_conn = sqlite3.connect(self.db_paths["state"], check_same_thread=False)
            self._state_conn.execute("PRAGMA journal_mode=WAL;")

    def close(self) -> None:
        """Close any open database connections."""
        if self._registry_conn is not None:
            self._registry_conn.close()
            self._registry_conn = None
        if self._state_conn is not None:
            self._state_conn.close()
            self._state_conn = None

    # Attachment registry

    def add_attachment(
        self,
        file_path: str,
        size: int,
        mime_type: Optional[str] = None,
        thumbnails: Optional[Iterable[str]] = None,
        migrated: bool = False,
        remote_key: Optional[str] = None,
        remote_url: Optional[str] = None,
    ) -> int:
        """Insert or update an attachment by relative path and return its ID."""
        self.connect()
        now = datetime.utcnow().isoformat()
        thumbnails_json = json.dumps(list(thumbnails or []))
        existing = self._registry_conn.execute(
            "SELECT id FROM attachments WHERE file_path = ?",
            (file_path,),
        ).fetchone()
        if existing:
            attachment_id = int(existing[0])
            self._registry_conn.execute(
                """
                UPDATE attachments
                SET size = ?, mime_type = ?, thumbnails_json = ?, updated_at = ?
                WHERE id = ?
                """,
                (size, mime_type, thumbnails_json, now, attachment_id),
            )
            self._registry_conn.commit()
            return attachment_id
        cursor = self._registry_conn.execute(
            """
            INSERT INTO attachments (
                file_path, mime_type, size, migrated, remote_key, remote_url,
                thumbnails_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                file_path,
                mime_type,
                size,
                1 if migrated else 0,
                remote_key,
                remote_url,
                thumbnails_json,
                now,
                now,
            ),
        )
        self._registry_conn.commit()
        return int(cursor.lastrowid)

    def get_attachment(self, attachment_id: int) -> Optional[AttachmentRecord]:
        """Fetch one attachment by ID."""
        self.connect()
        row = self._registry_conn.execute(
            f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE id = ?",
            (attachment_id,),
        ).fetchone()
        return _row_to_attachment(row) if row else None

    def count_attachments(self, attachment_filter: AttachmentFilter = AttachmentFilter.ALL) -> int:
        """Count attachments matching a filter."""
        self.connect()
        where, params = attachment_filter.where_clause()
        row = self._registry_conn.execute(
            f"SELECT COUNT(*) FROM attachments WHERE {where}",
            params,
        ).fetchone()
        return int(row[0]) if row else 0

    def page_attachments(
        self,
        attachment_filter: AttachmentFilter,
        after_id: int,
        limit: int,
    ) -> list[AttachmentRecord]:
        """Return up to ``limit`` attachments with id > ``after_id``, ascending."""
        self.connect()
        where, params = attachment_filter.where_clause()
        cursor = self._registry_conn.execute(
            f"""
            SELECT {_ATTACHMENT_COLUMNS}
            FROM attachments
            WHERE {where} AND id > ?
            ORDER BY id ASC
            LIMIT ?
            """,
            params + (after_id, limit),
        )
        return [_row_to_attachment(row) for row in cursor.fetchall()]

    def iter_attachments(
        self,
        attachment_filter: AttachmentFilter = AttachmentFilter.ALL,
        page_size: int = 500,
    ) -> Iterator[AttachmentRecord]:
        """Yield every matching attachment, one page at a time."""
        after_id = 0
        while True:
            page = self.page_attachments(attachment_filter, after_id, page_size)
            if not page:
                return
            yield from page
            after_id = page[-1].id

    def mark_migrated(
        self,
        attachment_id: int,
        remote_key: str,
        remote_url: Optional[str],
        provider: Optional[str] = None,
        thumb_keys: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record a successful upload for an attachment."""
        self.connect()
        self._registry_conn.execute(
            """
            UPDATE attachments
            SET migrated = 1, remote_key = ?, remote_url = ?, provider = COALESCE(?, provider),
                thumb_keys_json = COALESCE(?, thumb_keys_json), updated_at = ?
            WHERE id = ?
            """,
            (
                remote_key,
                remote_url,
                provider,
                json.dumps(thumb_keys) if thumb_keys is not None else None,
                datetime.utcnow().isoformat(),
                attachment_id,
            ),
        )
        self._registry_conn.commit()

    def clear_migration(self, attachment_id: int) -> None:
        """Drop migration metadata for one attachment."""
        self.connect()
        self._registry_conn.execute(
            """
            UPDATE attachments
            SET migrated = 0, remote_key = NULL, remote_url = NULL, provider = NULL,
                thumb_keys_json = NULL, updated_at = ?
            WHERE id = ?
            """,
            (datetime.utcnow().isoformat(), attachment_id),
        )
        self._registry_conn.commit()

    def clear_all_migrations(self) -> int:
        """Drop migration metadata from every attachment that carries any."""
        self.connect()
        cursor = self._registry_conn.execute(
            """
            UPDATE attachments
            SET migrated = 0, remote_key = NULL, remote_url = NULL, provider = NULL,
                thumb_keys_json = NULL, updated_at = ?
            WHERE migrated = 1 OR remote_key IS NOT NULL
            """,
            (datetime.utcnow().isoformat(),),
        )
        self._registry_conn.commit()
        return int(cursor.rowcount)

    def mark_optimized(self, attachment_id: int, new_size: int, bytes_saved: int) -> None:
        """Record an optimization pass for an attachment."""
        self.connect()
        self._registry_conn.execute(
            """
            UPDATE attachments
            SET optimized = 1,
                original_size = COALESCE(original_size, size),
                size = ?,
                bytes_saved = COALESCE(bytes_saved, 0) + ?,
                updated_at = ?
            WHERE id = ?
            """,
            (new_size, bytes_saved, datetime.utcnow().isoformat(), attachment_id),
        )
        self._registry_conn.commit()

    def migration_counts(self) -> dict[str, int]:
        """Return total, migrated and pending attachment counts."""
        total = self.count_attachments(AttachmentFilter.ALL)
        migrated = self.count_attachments(AttachmentFilter.MIGRATED)
        return {"total": total, "migrated": migrated, "pending": total - migrated}

    def optimization_counts(self) -> dict[str, int]:
        """Return image optimization counters."""
        self.connect()
        placeholders = ", ".join("?" for _ in OPTIMIZABLE_MIME_TYPES)
        row = self._registry_conn.execute(
            f"""
            SELECT COUNT(*),
                   COALESCE(SUM(CASE WHEN optimized = 1 THEN 1 ELSE 0 END), 0),
                   COALESCE(SUM(bytes_saved), 0),
                   COALESCE(SUM(CASE WHEN optimized = 1 THEN original_size ELSE 0 END), 0)
            FROM attachments
            WHERE mime_type IN ({placeholders})
            """,
            OPTIMIZABLE_MIME_TYPES,
        ).fetchone()
        total, optimized, saved, original = (int(value or 0) for value in row)
        return {
            "total_images": total,
            "optimized_images": optimized,
            "pending_optimization": total - optimized,
            "total_bytes_saved": saved,
            "original_bytes": original,
        }

    # Sweep state

    def load_sweep_state(self, kind: str) -> Optional[dict]:
        """Fetch the persisted state payload for a sweep kind."""
        self.connect()
        row = self._state_conn.execute(
            "SELECT state_json, version FROM sweep_states WHERE kind = ?",
            (kind,),
        ).fetchone()
        if not row:
            return None
        payload = json.loads(row[0]) if row[0] else {}
        payload["kind"] = kind
        payload["version"] = int(row[1] or 0)
        return payload

    def save_sweep_state(self, kind: str, payload: dict, expected_version: int) -> bool:
        """Write a state payload if the stored version still equals ``expected_version``."""
        self.connect()
        new_version = expected_version + 1
        stored = dict(payload, kind=kind, version=new_version)
        state_json = json.dumps(stored)
        now = datetime.utcnow().isoformat()
        cursor = self._state_conn.execute(
            """
            UPDATE sweep_states
            SET state_json = ?, version = ?, updated_at = ?
            WHERE kind = ? AND version = ?
            """,
            (state_json, new_version, now, kind, expected_version),
        )
        written = cursor.rowcount == 1
        if not written and expected_version == 0:
            cursor = self._state_conn.execute(
                """
                INSERT OR IGNORE INTO sweep_states (kind, state_json, version, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (kind, state_json, new_version, now),
            )
            written = cursor.rowcount == 1
        self._state_conn.commit()
        return written

    # History

    def record_history(
        self,
        action: str,
        attachment_id: Optional[int] = None,
        file_path: Optional[str] = None,
        remote_key: Optional[str] = None,
        size: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Append an audit entry."""
        self.connect()
        self._state_conn.execute(
            """
            INSERT INTO history (
                action, attachment_id, file_path, remote_key, size, details_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                action,
                attachment_id,
                file_path,
                remote_key,
                size,
                json.dumps(details) if details else None,
                datetime.utcnow().isoformat(),
            ),
        )
        self._state_conn.commit()

    def list_history(self, attachment_id: Optional[int] = None, limit: int = 100) -> list[dict]:
        """Return recent audit entries, newest first."""
        self.connect()
        query = (
            "SELECT action, attachment_id, file_path, remote_key, size, details_json, created_at "
            "FROM history"
        )
        params: list = []
        if attachment_id is not None:
            query += " WHERE attachment_id = ?"
            params.append(attachment_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        cursor = self._state_conn.execute(query, tuple(params))
        return [
            {
                "action": str(row[0]),
                "attachment_id": int(row[1]) if row[1] is not None else None,
                "file_path": str(row[2]) if row[2] else "",
                "remote_key": str(row[3]) if row[3] else "",
                "size": int(row[4]) if row[4] is not None else 0,
                "details": json.loads(row[5]) if row[5] else {},
                "created_at": str(row[6]) if row[6] else "",
            }
            for row in cursor.fetchall()
        ]

    # Retry queue

    def record_failed_operation(
        self,
        kind: str,
        attachment_id: int,
        file_path: Optional[str],
        error_message: str,
    ) -> None:
        """Insert or bump a failed operation in the retry queue."""
        self.connect()
        now = datetime.utcnow().isoformat()
        self._state_conn.execute(
            """
            INSERT INTO failed_operations (
                kind, attachment_id, file_path, error_message, retry_count, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(kind, attachment_id) DO UPDATE SET
                file_path = excluded.file_path,
                error_message = excluded.error_message,
                retry_count = failed_operations.retry_count + 1,
                updated_at = excluded.updated_at
            """,
            (kind, attachment_id, file_path, error_message, 1, now, now),
        )
        self._state_conn.commit()

    def list_failed_operations(self, kind: str, limit: Optional[int] = None) -> list[dict]:
        """List queued failures for a sweep kind, oldest first."""
        self.connect()
        query = """
            SELECT attachment_id, file_path, error_message, retry_count, created_at, updated_at
            FROM failed_operations
            WHERE kind = ?
            ORDER BY attachment_id ASC
        """
        params: list = [kind]
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        cursor = self._state_conn.execute(query, tuple(params))
        return [
            {
                "attachment_id": int(row[0]),
                "file_path": str(row[1]) if row[1] else "",
                "error_message": str(row[2]) if row[2] else "",
                "retry_count": int(row[3]) if row[3] is not None else 0,
                "created_at": str(row[4]) if row[4] else "",
                "updated_at": str(row[5]) if row[5] else "",
            }
            for row in cursor.fetchall()
        ]

    def count_failed_operations(self, kind: str) -> int:
        """Count queued failures for a sweep kind."""
        self.connect()
        row = self._state_conn.execute(
            "SELECT COUNT(*) FROM failed_operations WHERE kind = ?",
            (kind,),
        ).fetchone()
        return int(row[0]) if row else 0

    def remove_failed_operation(self, kind: str, attachment_id: int) -> None:
        """Drop one entry from the retry queue."""
        self.connect()
        self._state_conn.execute(
            "DELETE FROM failed_operations WHERE kind = ? AND attachment_id = ?",
            (kind, attachment_id),
        )
        self._state_conn.commit()

    # Cached aggregates

    def set_cache_value(self, cache_key: str, value: Any) -> None:
        """Store a JSON-serializable value under a key."""
        self.connect()
        self._state_conn.execute(
            """
            INSERT INTO cache_entries (cache_key, value_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (cache_key, json.dumps(value), datetime.utcnow().isoformat()),
        )
        self._state_conn.commit()

    def get_cache_value(self, cache_key: str, default: Any = None) -> Any:
        """Fetch a cached value or ``default``."""
        self.connect()
        row = self._state_conn.execute(
            "SELECT value_json FROM cache_entries WHERE cache_key = ?",
            (cache_key,),
        ).fetchone()
        if not row or row[0] is None:
            return default
        return json.loads(row[0])

    def delete_cache_value(self, cache_key: str) -> None:
        """Remove a cached value if present."""
        self.connect()
        self._state_conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (cache_key,))
        self._state_conn.commit()


def _row_to_attachment(row: tuple) -> AttachmentRecord:
    thumbnails = json.loads(row[7]) if row[7] else []
    thumb_keys = json.loads(row[8]) if row[8] else {}
    return AttachmentRecord(
        id=int(row[0]),
        file_path=str(row[1]),
        migrated=bool(row[2]),
        remote_key=str(row[3]) if row[3] else None,
        remote_url=str(row[4]) if row[4] else None,
        size=int(row[5]) if row[5] is not None else 0,
        mime_type=str(row[6]) if row[6] else None,
        thumbnails=tuple(str(value) for value in thumbnails),
        thumb_keys={str(name): str(key) for name, key in thumb_keys.items()},
        optimized=bool(row[9]),
        bytes_saved=int(row[10]) if row[10] is not None else 0,
    )
