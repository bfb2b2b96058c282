"""
S3-compatible object storage (AWS S3, Cloudflare R2, Backblaze B2, Wasabi, Spaces).
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from batch.errors import (
    ItemProcessingError,
    PermanentConfigurationError,
    TransientNetworkError,
)

from .base import ListPage, ObjectStorage, RemoteObject, UploadResult

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
CONFIGURATION_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "NoSuchBucket",
    "SignatureDoesNotMatch",
    "AuthorizationHeaderMalformed",
    "InvalidBucketName",
}


class S3ObjectStorage(ObjectStorage):
    """Object storage backed by a boto3 S3 client."""

    provider = "s3"

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        public_url: Optional[str] = None,
        client=None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not bucket:
            raise PermanentConfigurationError("Storage bucket is not configured.")
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_url = public_url.rstrip("/") if public_url else None
        self.logger = logger or logging.getLogger("media_offload")
        self.transfer_logger = logging.getLogger("media_offload.transfer")
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name=region,
                config=Config(
                    retries={"max_attempts": 3, "mode": "standard"},
                    connect_timeout=30,
                    read_timeout=60,
                ),
            )
        self.client = client

    def list_page(
        self,
        prefix: str,
        limit: int,
        continuation_token: Optional[str] = None,
    ) -> ListPage:
        params = {"Bucket": self.bucket, "MaxKeys": limit}
        if prefix:
            params["Prefix"] = prefix
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        try:
            response = self.client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, f"list {prefix or '/'}") from exc
        entries = [
            RemoteObject(key=str(item["Key"]), size=int(item.get("Size", 0)))
            for item in response.get("Contents", [])
        ]
        return ListPage(
            entries=entries,
            next_token=response.get("NextContinuationToken"),
            is_truncated=bool(response.get("IsTruncated", False)),
        )

    def upload(self, path: Path, key: str, content_type: Optional[str] = None) -> UploadResult:
        path = Path(path)
        if not path.exists():
            raise ItemProcessingError(f"Local file not found: {path}")
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0]
        extra_args = {"ContentType": content_type} if content_type else {}
        try:
            self.client.upload_file(str(path), self.bucket, key, ExtraArgs=extra_args)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, f"upload {key}") from exc
        self.transfer_logger.info("UPLOAD %s -> s3://%s/%s", path, self.bucket, key)
        return UploadResult(key=key, url=self.url_for(key))

    def delete(self, key: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            self.logger.warning("Delete failed for %s: %s", key, exc)
            return False
        self.transfer_logger.info("DELETE s3://%s/%s", self.bucket, key)
        return True

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if _error_code(exc) in NOT_FOUND_CODES:
                return False
            raise self._translate(exc, f"head {key}") from exc
        except BotoCoreError as exc:
            raise self._translate(exc, f"head {key}") from exc

    def url_for(self, key: str) -> Optional[str]:
        if self.public_url:
            return f"{self.public_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def _translate(self, exc: Exception, context: str) -> Exception:
        if isinstance(exc, ClientError):
            code = _error_code(exc)
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in CONFIGURATION_CODES or status in (401, 403):
                self.logger.error("S3 %s rejected (%s): check bucket and credentials", context, code)
                return PermanentConfigurationError(f"S3 {context} rejected: {code}")
            self.logger.warning("S3 %s failed (%s): %s", context, code, exc)
            return TransientNetworkError(f"S3 {context} failed: {code}", status_code=status)
        self.logger.warning("S3 %s failed: %s", context, exc)
        return TransientNetworkError(f"S3 {context} failed: {exc}")


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "Unknown"))
