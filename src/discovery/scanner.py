"""
Register files from the local uploads tree in the attachment registry.
"""

from __future__ import annotations

import fnmatch
import logging
import mimetypes
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from config import AppConfig
from database import DatabaseManager
from storage import is_thumbnail_key


@dataclass
class ScanStats:
    """Summary of one registration pass."""

    registered: int = 0
    thumbnails: int = 0
    skipped: int = 0


class UploadScanner:
    """Walk the uploads root and upsert one attachment per original file.

    Files named like ``<stem>-<w>x<h>[-<variant>].<ext>`` next to an original
    are recorded as that original's thumbnails rather than as attachments.
    """

    def __init__(
        self,
        config: AppConfig,
        db_manager: DatabaseManager,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.db_manager = db_manager
        self.logger = logger or logging.getLogger("media_offload")
        self.uploads_root = config.resolve_path("paths", "uploads", default="uploads")
        self.skip_hidden = bool(self.config.get("scan", "skip_hidden", default=True))
        self.excluded_patterns = list(self.config.get("scan", "exclude_patterns", default=[]) or [])
        self.progress_log_interval = int(self.config.get("scan", "progress_log_interval", default=500))

    def scan(self, root: Optional[Path] = None) -> ScanStats:
        root = Path(root) if root is not None else self.uploads_root
        stats = ScanStats()
        if not root.exists():
            self.logger.warning("Uploads root does not exist: %s", root)
            return stats
        for directory, names in self._iter_directories(root):
            originals = [name for name in names if not is_thumbnail_key(name)]
            thumbnails = [name for name in names if is_thumbnail_key(name)]
            for name in originals:
                path = directory / name
                try:
                    size = path.stat().st_size
                except OSError as exc:
                    self.logger.warning("Skipping unreadable file %s: %s", path, exc)
                    stats.skipped += 1
                    continue
                own_thumbnails = _thumbnails_for(name, thumbnails)
                self.db_manager.add_attachment(
                    path.relative_to(root).as_posix(),
                    size,
                    mime_type=mimetypes.guess_type(name)[0],
                    thumbnails=own_thumbnails,
                )
                stats.registered += 1
                stats.thumbnails += len(own_thumbnails)
                if self.progress_log_interval > 0 and stats.registered % self.progress_log_interval == 0:
                    self.logger.info("Registration progress: %s files", stats.registered)
        self.logger.info(
            "Registered %s attachments (%s thumbnails, %s skipped) from %s",
            stats.registered,
            stats.thumbnails,
            stats.skipped,
            root,
        )
        return stats

    def _iter_directories(self, root: Path) -> Iterator[tuple[Path, list[str]]]:
        for current, dirs, files in os.walk(root):
            if self.skip_hidden:
                dirs[:] = [name for name in dirs if not name.startswith(".")]
            dirs.sort()
            names = sorted(name for name in files if not self._is_excluded(name))
            if names:
                yield Path(current), names

    def _is_excluded(self, name: str) -> bool:
        if self.skip_hidden and name.startswith("."):
            return True
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.excluded_patterns)


def _thumbnails_for(original: str, candidates: list[str]) -> list[str]:
    stem = Path(original).stem
    pattern = re.compile(rf"^{re.escape(stem)}-\d+x\d+(-[a-z0-9]+)?\.[a-zA-Z0-9]+$")
    return [name for name in candidates if pattern.match(name)]
