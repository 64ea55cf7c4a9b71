"""
S3-compatible object store backed by the MinIO client.

Containers map to buckets. ``copy_object`` is a blocking server-side copy, so
it runs in a worker thread and the returned handle is polled like any other
asynchronous copy.
"""

import asyncio
import io
import logging
from typing import Callable, Dict, List, Optional, Tuple

import urllib3
from minio import Minio
from minio.commonconfig import REPLACE, CopySource
from minio.error import S3Error, ServerError

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import (
    CopyInterruptedError,
    ObjectNotFoundError,
    TransientStoreError,
)
from file_lifecycle.models import CopyStatus, StorageLocation
from file_lifecycle.storage.object_store import CopyHandle, ObjectStore

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchObject"}
AUTH_ERROR_CODES = {"AccessDenied", "ExpiredToken", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
TRANSIENT_CODES = {"SlowDown", "ServiceUnavailable", "InternalError", "RequestTimeout"}
META_PREFIX = "x-amz-meta-"


class MinioObjectStore(ObjectStore):
    """
    MinIO/S3 implementation of the object store interface.

    Authentication failures rebuild the client from freshly loaded settings
    and are reported as TransientStoreError, so rotated credentials are picked
    up by the next retry.
    """

    def __init__(
        self,
        settings: Settings,
        settings_loader: Callable[[], Settings] = Settings,
        client: Optional[Minio] = None,
    ):
        self.settings = settings
        self._settings_loader = settings_loader
        self._client = client or self._build_client(settings)
        self._copies: Dict[str, asyncio.Task] = {}
        self._in_flight: Dict[Tuple[StorageLocation, StorageLocation], CopyHandle] = {}
        logging.info(f"MinioObjectStore initialized for endpoint {settings.minio_endpoint}")

    @staticmethod
    def _build_client(settings: Settings) -> Minio:
        return Minio(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )

    def _reconnect(self) -> None:
        self.settings = self._settings_loader()
        self._client = self._build_client(self.settings)
        logging.warning("MinIO credentials rejected, client rebuilt from current configuration")

    def _translate(self, error: Exception, operation: str, location: Optional[StorageLocation] = None) -> Exception:
        if isinstance(error, S3Error):
            if error.code in NOT_FOUND_CODES and location is not None:
                return ObjectNotFoundError(location)
            if error.code in AUTH_ERROR_CODES:
                self._reconnect()
                return TransientStoreError(f"Authentication failed during {operation}: {error.code}")
            if error.code in TRANSIENT_CODES:
                return TransientStoreError(f"Store busy during {operation}: {error.code}")
            return error
        if isinstance(error, (ServerError, urllib3.exceptions.HTTPError, ConnectionError, TimeoutError)):
            return TransientStoreError(f"Store unavailable during {operation}: {error}")
        return error

    async def _call(self, operation: str, location: Optional[StorageLocation], fn, **kwargs):
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except (S3Error, ServerError, urllib3.exceptions.HTTPError, ConnectionError, TimeoutError) as e:
            translated = self._translate(e, operation, location)
            if translated is e:
                raise
            raise translated from e

    async def copy(
        self,
        source: StorageLocation,
        destination: StorageLocation,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CopyHandle:
        existing = self._in_flight.get((source, destination))
        task = self._copies.get(existing.copy_id) if existing is not None else None
        if task is not None and not task.done():
            return existing

        if not await self.exists(source):
            raise ObjectNotFoundError(source)

        handle = CopyHandle(source=source, destination=destination)
        kwargs = dict(
            bucket_name=destination.container,
            object_name=destination.key,
            source=CopySource(bucket_name=source.container, object_name=source.key),
        )
        if metadata:
            kwargs.update(metadata=dict(metadata), metadata_directive=REPLACE)

        self._copies[handle.copy_id] = asyncio.create_task(
            asyncio.to_thread(self._client.copy_object, **kwargs),
            name=f"copy-{handle.copy_id[:8]}",
        )
        self._in_flight[(source, destination)] = handle
        logging.debug(f"Started server-side {handle}")
        return handle

    async def poll_copy_status(self, handle: CopyHandle) -> CopyStatus:
        task = self._copies.get(handle.copy_id)
        if task is None:
            return CopyStatus.SUCCESS if await self.exists(handle.destination) else CopyStatus.FAILED
        if not task.done():
            return CopyStatus.PENDING

        del self._copies[handle.copy_id]
        self._in_flight.pop((handle.source, handle.destination), None)
        if task.cancelled():
            return CopyStatus.ABORTED
        error = task.exception()
        if error is not None:
            # Rebuilds the client on rejected credentials
            translated = self._translate(error, f"copy {handle}")
            if isinstance(translated, TransientStoreError):
                logging.warning(f"{handle} broke off on a transient error: {error}")
                raise CopyInterruptedError(str(translated)) from error
            logging.error(f"{handle} failed: {error}")
            return CopyStatus.FAILED
        return CopyStatus.SUCCESS

    async def abort_copy(self, handle: CopyHandle) -> None:
        # The server-side copy cannot be interrupted; stop tracking it instead
        task = self._copies.pop(handle.copy_id, None)
        if task is not None and not task.done():
            task.cancel()
            logging.warning(f"Stopped waiting for {handle}")
        self._in_flight.pop((handle.source, handle.destination), None)

    async def delete(self, location: StorageLocation) -> bool:
        if not await self.exists(location):
            return False
        await self._call(
            f"delete of {location}",
            location,
            self._client.remove_object,
            bucket_name=location.container,
            object_name=location.key,
        )
        return True

    async def _stat(self, location: StorageLocation):
        return await self._call(
            f"stat of {location}",
            location,
            self._client.stat_object,
            bucket_name=location.container,
            object_name=location.key,
        )

    async def fetch_size(self, location: StorageLocation) -> int:
        stat = await self._stat(location)
        return int(stat.size)

    async def exists(self, location: StorageLocation) -> bool:
        try:
            await self._stat(location)
        except ObjectNotFoundError:
            return False
        return True

    async def read(self, location: StorageLocation) -> bytes:
        def _read() -> bytes:
            response = self._client.get_object(
                bucket_name=location.container, object_name=location.key
            )
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        return await self._call(f"read of {location}", location, _read)

    async def write(self, location: StorageLocation, content: bytes) -> None:
        await self._call(
            f"write of {location}",
            None,
            self._client.put_object,
            bucket_name=location.container,
            object_name=location.key,
            data=io.BytesIO(content),
            length=len(content),
        )

    async def list_keys(self, container: str) -> List[str]:
        def _list() -> List[str]:
            objects = self._client.list_objects(bucket_name=container, recursive=False)
            return sorted(obj.object_name for obj in objects if not obj.is_dir)

        return await self._call(f"listing of {container}", None, _list)

    async def get_metadata(self, location: StorageLocation) -> Dict[str, str]:
        stat = await self._stat(location)
        result = {}
        for name, value in (stat.metadata or {}).items():
            if name.lower().startswith(META_PREFIX):
                result[name[len(META_PREFIX):].lower()] = value
        return result

    async def close(self) -> None:
        for task in self._copies.values():
            if not task.done():
                task.cancel()
        self._copies.clear()
        self._in_flight.clear()

    def get_store_info(self) -> dict:
        return {
            "backend": self.__class__.__name__,
            "endpoint": self.settings.minio_endpoint,
            "copies_tracked": len(self._copies),
            "copies_in_flight": len(self._in_flight),
        }
