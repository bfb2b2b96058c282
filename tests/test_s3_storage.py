from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from batch import ItemProcessingError, PermanentConfigurationError, TransientNetworkError
from config import AppConfig
from storage import S3ObjectStorage, build_storage


def client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


def build(client: MagicMock, **kwargs) -> S3ObjectStorage:
    return S3ObjectStorage(bucket="media", client=client, **kwargs)


def test_list_page_passes_token_and_parses_entries() -> None:
    client = MagicMock()
    client.list_objects_v2.return_value = {
        "Contents": [{"Key": "wp/a.jpg", "Size": 10}, {"Key": "wp/b.jpg", "Size": 20}],
        "IsTruncated": True,
        "NextContinuationToken": "next",
    }
    storage = build(client)

    page = storage.list_page("wp/", 2, "token-1")

    client.list_objects_v2.assert_called_once_with(
        Bucket="media", MaxKeys=2, Prefix="wp/", ContinuationToken="token-1"
    )
    assert [entry.key for entry in page.entries] == ["wp/a.jpg", "wp/b.jpg"]
    assert page.next_token == "next"
    assert page.is_truncated is True


def test_iter_objects_stops_on_last_page() -> None:
    client = MagicMock()
    client.list_objects_v2.side_effect = [
        {"Contents": [{"Key": "a.jpg", "Size": 1}], "IsTruncated": True, "NextContinuationToken": "t"},
        {"Contents": [{"Key": "b.jpg", "Size": 2}], "IsTruncated": False},
    ]
    storage = build(client)

    keys = [entry.key for entry in storage.iter_objects()]

    assert keys == ["a.jpg", "b.jpg"]
    assert client.list_objects_v2.call_count == 2


def test_upload_sets_content_type(tmp_path: Path) -> None:
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"jpeg")
    client = MagicMock()
    storage = build(client, public_url="https://cdn.example.com/")

    result = storage.upload(path, "wp/photo.jpg")

    client.upload_file.assert_called_once_with(
        str(path), "media", "wp/photo.jpg", ExtraArgs={"ContentType": "image/jpeg"}
    )
    assert result.url == "https://cdn.example.com/wp/photo.jpg"


def test_upload_of_missing_file_fails_the_item(tmp_path: Path) -> None:
    client = MagicMock()
    storage = build(client)

    with pytest.raises(ItemProcessingError):
        storage.upload(tmp_path / "missing.jpg", "wp/missing.jpg")
    client.upload_file.assert_not_called()


def test_exists_maps_client_errors() -> None:
    client = MagicMock()
    storage = build(client)

    assert storage.exists("wp/a.jpg") is True

    client.head_object.side_effect = client_error("404", 404)
    assert storage.exists("wp/a.jpg") is False

    client.head_object.side_effect = client_error("403", 403)
    with pytest.raises(PermanentConfigurationError):
        storage.exists("wp/a.jpg")

    client.head_object.side_effect = client_error("SlowDown", 503)
    with pytest.raises(TransientNetworkError) as excinfo:
        storage.exists("wp/a.jpg")
    assert excinfo.value.status_code == 503

    client.head_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example.com")
    with pytest.raises(TransientNetworkError):
        storage.exists("wp/a.jpg")


def test_listing_with_bad_credentials_is_permanent() -> None:
    client = MagicMock()
    client.list_objects_v2.side_effect = client_error("InvalidAccessKeyId", 400, "ListObjectsV2")
    storage = build(client)

    with pytest.raises(PermanentConfigurationError):
        storage.list_page("", 10)


def test_delete_reports_refusal() -> None:
    client = MagicMock()
    client.delete_object.side_effect = client_error("AccessDenied", 403, "DeleteObject")
    storage = build(client)

    assert storage.delete("wp/a.jpg") is False


def test_url_for_prefers_public_url() -> None:
    client = MagicMock()

    assert build(client, endpoint_url="https://r2.example.com/").url_for("k") == "https://r2.example.com/media/k"
    assert build(client, region="eu-west-1").url_for("k") == "https://media.s3.eu-west-1.amazonaws.com/k"
    assert build(client).url_for("k") == "https://media.s3.amazonaws.com/k"


def test_factory_validates_provider_and_bucket(tmp_path: Path) -> None:
    with pytest.raises(PermanentConfigurationError):
        build_storage(AppConfig.from_dict({"storage": {"provider": "ftp", "bucket": "x"}}, root_dir=tmp_path))
    with pytest.raises(PermanentConfigurationError):
        build_storage(AppConfig.from_dict({"storage": {"provider": "r2"}}, root_dir=tmp_path))

    storage = build_storage(
        AppConfig.from_dict(
            {
                "storage": {
                    "provider": "r2",
                    "bucket": "media",
                    "region": "auto",
                    "endpoint_url": "https://account.r2.cloudflarestorage.com",
                    "access_key_id": "key",
                    "secret_access_key": "secret",
                }
            },
            root_dir=tmp_path,
        )
    )
    assert storage.provider == "r2"
    assert storage.bucket == "media"
