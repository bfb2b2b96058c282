"""
Mapping between repository-relative paths and remote object keys.
"""

from __future__ import annotations

import re
from typing import Optional

THUMBNAIL_PATTERN = re.compile(r"-\d+x\d+(-[a-z0-9]+)?\.[a-zA-Z0-9]+$")
UPLOADS_SEGMENT = "uploads/"


def is_thumbnail_key(key: str) -> bool:
    """Return True for keys named like ``photo-300x200.jpg`` or ``photo-150x150-crop.webp``."""
    return bool(THUMBNAIL_PATTERN.search(key))


def normalize_base_path(base_path: Optional[str]) -> str:
    if not base_path:
        return ""
    return base_path.strip("/")


def build_key(relative_path: str, base_path: Optional[str] = None) -> str:
    base = normalize_base_path(base_path)
    relative = relative_path.replace("\\", "/").lstrip("/")
    if not base:
        return relative
    return f"{base}/{relative}"


def extract_relative_path(key: str, base_path: Optional[str] = None) -> str:
    """Map a remote key back to the path the registry stores.

    The configured base prefix is stripped first. Keys written under another
    prefix fall back to whatever follows the last ``uploads/`` segment.
    """
    base = normalize_base_path(base_path)
    if base and key.startswith(base + "/"):
        return key[len(base) + 1 :]
    marker = key.rfind(UPLOADS_SEGMENT)
    if marker != -1:
        return key[marker + len(UPLOADS_SEGMENT) :]
    return key.lstrip("/")
