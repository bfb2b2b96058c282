"""
Object storage interface consumed by sweeps and reconciliation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional


@dataclass(frozen=True)
class RemoteObject:
    """One entry of a remote listing."""

    key: str
    size: int


@dataclass(frozen=True)
class ListPage:
    entries: list[RemoteObject] = field(default_factory=list)
    next_token: Optional[str] = None
    is_truncated: bool = False


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: Optional[str]


class ObjectStorage(ABC):
    """Minimal primitives needed from a remote object store."""

    provider = "abstract"

    @abstractmethod
    def list_page(
        self,
        prefix: str,
        limit: int,
        continuation_token: Optional[str] = None,
    ) -> ListPage:
        """Return one page of the listing under ``prefix``."""

    @abstractmethod
    def upload(self, path: Path, key: str, content_type: Optional[str] = None) -> UploadResult:
        """Upload a local file under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an object; False when the store refused."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Head-check a single key."""

    @abstractmethod
    def url_for(self, key: str) -> Optional[str]:
        """Public URL for a key, when one can be derived."""

    def iter_objects(self, prefix: str = "", page_size: int = 1000) -> Iterator[RemoteObject]:
        """Yield every object under ``prefix``, fetching pages on demand.

        Restartable: each call begins a fresh listing.
        """
        token: Optional[str] = None
        while True:
            page = self.list_page(prefix, page_size, token)
            yield from page.entries
            if not page.is_truncated or not page.next_token:
                return
            token = page.next_token
