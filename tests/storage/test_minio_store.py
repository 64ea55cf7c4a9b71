"""
MinioObjectStore against a mocked Minio client.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import urllib3
from minio import Minio
from minio.error import S3Error

from file_lifecycle.core.exceptions import (
    CopyInterruptedError,
    ObjectNotFoundError,
    TransientStoreError,
)
from file_lifecycle.models import CopyStatus, StorageLocation
from file_lifecycle.storage.minio_store import MinioObjectStore


class FakeS3Error(S3Error):
    """S3Error carrying only an error code."""

    code = property(lambda self: self._fake_code)

    def __init__(self, code):
        Exception.__init__(self, code)
        self._fake_code = code

    def __str__(self):
        return f"S3 operation failed; code: {self._fake_code}"


def loc(container, key):
    return StorageLocation(container=container, key=key)


@pytest.fixture
def client():
    return MagicMock(spec=Minio)


@pytest.fixture
def minio_settings(settings):
    return settings.model_copy(
        update={"store_backend": "minio", "minio_endpoint": "minio.local:9000", "minio_secure": False}
    )


@pytest.fixture
def minio_store(minio_settings, client):
    return MinioObjectStore(minio_settings, settings_loader=lambda: minio_settings, client=client)


async def wait_final(store, handle):
    for _ in range(200):
        status = await store.poll_copy_status(handle)
        if status.is_final:
            return status
        await asyncio.sleep(0.005)
    raise AssertionError("copy never finished")


@pytest.mark.asyncio
async def test_copy_uses_server_side_copy_with_metadata(minio_store, client):
    client.stat_object.return_value = SimpleNamespace(size=10, metadata={})

    handle = await minio_store.copy(
        loc("processing", "a.txt"), loc("error", "a.txt"), {"error-message": "boom"}
    )

    assert await wait_final(minio_store, handle) == CopyStatus.SUCCESS
    kwargs = client.copy_object.call_args.kwargs
    assert kwargs["bucket_name"] == "error"
    assert kwargs["object_name"] == "a.txt"
    assert kwargs["source"].bucket_name == "processing"
    assert kwargs["metadata"] == {"error-message": "boom"}


@pytest.mark.asyncio
async def test_failed_copy_reports_failed(minio_store, client):
    client.stat_object.return_value = SimpleNamespace(size=10, metadata={})
    client.copy_object.side_effect = FakeS3Error("InvalidRequest")

    handle = await minio_store.copy(loc("inbound", "a.txt"), loc("processing", "a.txt"))

    assert await wait_final(minio_store, handle) == CopyStatus.FAILED
    assert minio_store.get_store_info()["copies_tracked"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["ExpiredToken", "AccessDenied"])
async def test_copy_rejected_credentials_rebuild_client(minio_settings, client, code):
    reloads = []

    def loader():
        reloads.append(True)
        return minio_settings

    store = MinioObjectStore(minio_settings, settings_loader=loader, client=client)
    client.stat_object.return_value = SimpleNamespace(size=10, metadata={})
    client.copy_object.side_effect = FakeS3Error(code)

    handle = await store.copy(loc("inbound", "a.txt"), loc("processing", "a.txt"))

    with pytest.raises(CopyInterruptedError, match="Authentication failed"):
        await wait_final(store, handle)
    assert reloads == [True]
    assert store._client is not client
    assert store.get_store_info()["copies_tracked"] == 0


@pytest.mark.asyncio
async def test_throttled_copy_is_interrupted(minio_store, client):
    client.stat_object.return_value = SimpleNamespace(size=10, metadata={})
    client.copy_object.side_effect = FakeS3Error("SlowDown")

    handle = await minio_store.copy(loc("inbound", "a.txt"), loc("processing", "a.txt"))

    with pytest.raises(CopyInterruptedError, match="SlowDown"):
        await wait_final(minio_store, handle)


@pytest.mark.asyncio
async def test_successful_copy_is_forgotten(minio_store, client):
    client.stat_object.return_value = SimpleNamespace(size=10, metadata={})

    handle = await minio_store.copy(loc("inbound", "a.txt"), loc("processing", "a.txt"))

    assert await wait_final(minio_store, handle) == CopyStatus.SUCCESS
    assert minio_store.get_store_info()["copies_tracked"] == 0


@pytest.mark.asyncio
async def test_missing_objects(minio_store, client):
    client.stat_object.side_effect = FakeS3Error("NoSuchKey")

    assert not await minio_store.exists(loc("inbound", "gone.txt"))
    assert await minio_store.delete(loc("inbound", "gone.txt")) is False
    with pytest.raises(ObjectNotFoundError):
        await minio_store.fetch_size(loc("inbound", "gone.txt"))
    with pytest.raises(ObjectNotFoundError):
        await minio_store.copy(loc("inbound", "gone.txt"), loc("processing", "gone.txt"))
    client.remove_object.assert_not_called()


@pytest.mark.asyncio
async def test_network_errors_are_transient(minio_store, client):
    client.stat_object.side_effect = urllib3.exceptions.MaxRetryError(None, "/inbound/a.txt")

    with pytest.raises(TransientStoreError):
        await minio_store.fetch_size(loc("inbound", "a.txt"))


@pytest.mark.asyncio
async def test_expired_credentials_rebuild_client(minio_settings, client):
    reloads = []

    def loader():
        reloads.append(True)
        return minio_settings

    store = MinioObjectStore(minio_settings, settings_loader=loader, client=client)
    client.stat_object.side_effect = FakeS3Error("ExpiredToken")

    with pytest.raises(TransientStoreError, match="Authentication failed"):
        await store.fetch_size(loc("inbound", "a.txt"))

    assert reloads == [True]
    assert store._client is not client


@pytest.mark.asyncio
async def test_metadata_prefix_is_stripped(minio_store, client):
    client.stat_object.return_value = SimpleNamespace(
        size=3,
        metadata={"X-Amz-Meta-Error-Message": "Moving failed", "Content-Type": "text/plain"},
    )

    assert await minio_store.get_metadata(loc("error", "a.txt")) == {"error-message": "Moving failed"}


@pytest.mark.asyncio
async def test_list_keys_skips_prefixes(minio_store, client):
    client.list_objects.return_value = [
        SimpleNamespace(object_name="b.txt", is_dir=False),
        SimpleNamespace(object_name="nested/", is_dir=True),
        SimpleNamespace(object_name="a.txt", is_dir=False),
    ]

    assert await minio_store.list_keys("inbound") == ["a.txt", "b.txt"]
