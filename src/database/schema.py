"""
Database schema definitions for the media offload service.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict


def create_databases(db_paths: Dict[str, Path]) -> None:
    """Create all SQLite databases and their tables."""
    create_registry_db(db_paths["registry"])
    create_state_db(db_paths["state"])


def create_registry_db(db_path: Path) -> None:
    """Create the attachment registry database and its tables."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS attachments (
            id INTEGER PRIMARY KEY,
            file_path TEXT UNIQUE,
            mime_type TEXT,
            size INTEGER,
            migrated BOOLEAN DEFAULT 0,
            remote_key TEXT,
            remote_url TEXT,
            provider TEXT,
            thumbnails_json TEXT,
            thumb_keys_json TEXT,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """
    )
    _ensure_column(conn, "attachments", "optimized", "BOOLEAN DEFAULT 0")
    _ensure_column(conn, "attachments", "original_size", "INTEGER")
    _ensure_column(conn, "attachments", "bytes_saved", "INTEGER DEFAULT 0")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_attachments_migrated ON attachments(migrated, id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_attachments_optimized ON attachments(optimized, id)")
    conn.commit()
    conn.close()


def create_state_db(db_path: Path) -> None:
    """Create the state database for sweeps, history and caches."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sweep_states (
            kind TEXT PRIMARY KEY,
            state_json TEXT,
            version INTEGER,
            updated_at TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS history (
            id INTEGER PRIMARY KEY,
            action TEXT,
            attachment_id INTEGER,
            file_path TEXT,
            remote_key TEXT,
            size INTEGER,
            details_json TEXT,
            created_at TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS failed_operations (
            kind TEXT,
            attachment_id INTEGER,
            file_path TEXT,
            error_message TEXT,
            retry_count INTEGER,
            created_at TIMESTAMP,
            updated_at TIMESTAMP,
            PRIMARY KEY (kind, attachment_id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cache_entries (
            cache_key TEXT PRIMARY KEY,
            value_json TEXT,
            updated_at TIMESTAMP
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_attachment ON history(attachment_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_failed_operations_kind ON failed_operations(kind)")
    conn.commit()
    conn.close()


def _connect(db_path: Path) -> sqlite3.Connection:
    """Create a SQLite connection with WAL enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    """Ensure a column exists on a SQLite table."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    existing = {row[1] for row in cursor.fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
