"""
Remote object storage abstraction and backends.
"""

from .base import ListPage, ObjectStorage, RemoteObject, UploadResult
from .factory import build_storage
from .keys import build_key, extract_relative_path, is_thumbnail_key
from .s3 import S3ObjectStorage

__all__ = [
    "ListPage",
    "ObjectStorage",
    "RemoteObject",
    "S3ObjectStorage",
    "UploadResult",
    "build_key",
    "build_storage",
    "extract_relative_path",
    "is_thumbnail_key",
]
