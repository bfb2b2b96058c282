"""
Build the configured object storage backend.
"""

from __future__ import annotations

import logging
from typing import Optional

from batch.errors import PermanentConfigurationError
from config import AppConfig

from .base import ObjectStorage
from .s3 import S3ObjectStorage

S3_COMPATIBLE_PROVIDERS = {"s3", "r2", "b2", "wasabi", "spaces", "minio"}


def build_storage(config: AppConfig, logger: Optional[logging.Logger] = None) -> ObjectStorage:
    provider = str(config.get("storage", "provider", default="s3")).lower()
    if provider not in S3_COMPATIBLE_PROVIDERS:
        raise PermanentConfigurationError(f"Unsupported storage provider: {provider}")
    bucket = config.get("storage", "bucket", default=None)
    if not bucket:
        raise PermanentConfigurationError("Storage bucket is not configured.")
    storage = S3ObjectStorage(
        bucket=str(bucket),
        region=config.get("storage", "region", default=None),
        endpoint_url=config.get("storage", "endpoint_url", default=None),
        access_key_id=config.get_secret("storage", "access_key_id"),
        secret_access_key=config.get_secret("storage", "secret_access_key"),
        public_url=config.get("storage", "public_url", default=None),
        logger=logger,
    )
    storage.provider = provider
    return storage
