from pathlib import Path
from typing import Optional

import pytest

from batch.errors import TransientNetworkError
from database import DatabaseManager
from storage import ListPage, ObjectStorage, RemoteObject, UploadResult


class MemoryStorage(ObjectStorage):
    """Object storage double keeping keys and sizes in a dict."""

    provider = "memory"

    def __init__(self, objects: Optional[dict] = None, page_size: Optional[int] = None) -> None:
        self.objects: dict[str, int] = dict(objects or {})
        self.page_size = page_size
        self.uploads: list[tuple[Path, str]] = []
        self.list_calls = 0
        self.fail_keys: set[str] = set()
        self.fail_listing = False

    def list_page(self, prefix: str, limit: int, continuation_token: Optional[str] = None) -> ListPage:
        self.list_calls += 1
        if self.fail_listing:
            raise TransientNetworkError("listing unavailable", status_code=503)
        keys = sorted(key for key in self.objects if key.startswith(prefix))
        if self.page_size:
            limit = min(limit, self.page_size)
        start = int(continuation_token or 0)
        chunk = keys[start : start + limit]
        end = start + len(chunk)
        truncated = end < len(keys)
        return ListPage(
            entries=[RemoteObject(key=key, size=self.objects[key]) for key in chunk],
            next_token=str(end) if truncated else None,
            is_truncated=truncated,
        )

    def upload(self, path: Path, key: str, content_type: Optional[str] = None) -> UploadResult:
        if key in self.fail_keys:
            raise TransientNetworkError(f"upload of {key} failed", status_code=503)
        self.objects[key] = Path(path).stat().st_size
        self.uploads.append((Path(path), key))
        return UploadResult(key=key, url=self.url_for(key))

    def delete(self, key: str) -> bool:
        return self.objects.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        return key in self.objects

    def url_for(self, key: str) -> Optional[str]:
        return f"https://cdn.example.test/{key}"


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "registry": root / "registry.sqlite",
        "state": root / "state.sqlite",
    }


@pytest.fixture
def db(tmp_path: Path):
    manager = DatabaseManager(build_db_paths(tmp_path / "data"))
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def uploads(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root
