"""
Local directory-backed object store.

Each container is a directory below ``store_root_directory``. Copies run as
background asyncio tasks that write to a hidden temporary file and rename it
into place, so a destination is never observable half-written.
"""

import asyncio
import errno
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import (
    CopyInterruptedError,
    ObjectNotFoundError,
    TransientStoreError,
)
from file_lifecycle.models import CopyStatus, StorageLocation
from file_lifecycle.storage.object_store import CopyHandle, ObjectStore

METADATA_DIR = ".metadata"

# errno codes that indicate an unavailable mount rather than a bad request
TRANSIENT_ERRNO_CODES = {
    errno.EIO,
    errno.EAGAIN,
    errno.EBUSY,
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENOTCONN,
    errno.EPIPE,
    errno.ESTALE,
}


def _translate_os_error(error: OSError, operation: str) -> Exception:
    if error.errno in TRANSIENT_ERRNO_CODES:
        return TransientStoreError(f"Transient error during {operation}: {error}")
    return error


class LocalObjectStore(ObjectStore):
    """Object store over a local or mounted directory tree."""

    def __init__(self, settings: Settings, root_directory: Optional[str] = None):
        self.root = Path(root_directory or settings.store_root_directory)
        self.chunk_size = settings.chunk_size_kb * 1024
        self._copies: Dict[str, asyncio.Task] = {}
        self._in_flight: Dict[Tuple[StorageLocation, StorageLocation], CopyHandle] = {}
        logging.info(f"LocalObjectStore initialized at {self.root}")

    def _path(self, location: StorageLocation) -> Path:
        key_path = Path(location.key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError(f"Invalid object key: {location.key}")
        return self.root / location.container / key_path

    def _metadata_path(self, location: StorageLocation) -> Path:
        return self.root / location.container / METADATA_DIR / f"{location.key}.json"

    async def copy(
        self,
        source: StorageLocation,
        destination: StorageLocation,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CopyHandle:
        existing = self._in_flight.get((source, destination))
        task = self._copies.get(existing.copy_id) if existing is not None else None
        if task is not None and not task.done():
            logging.debug(f"Re-issued {existing} while pending, returning existing handle")
            return existing

        if not await aiofiles.os.path.exists(self._path(source)):
            raise ObjectNotFoundError(source)

        handle = CopyHandle(source=source, destination=destination)
        self._copies[handle.copy_id] = asyncio.create_task(
            self._perform_copy(handle, metadata), name=f"copy-{handle.copy_id[:8]}"
        )
        self._in_flight[(source, destination)] = handle
        logging.debug(f"Started {handle}")
        return handle

    async def _perform_copy(self, handle: CopyHandle, metadata: Optional[Dict[str, str]]) -> int:
        source_path = self._path(handle.source)
        dest_path = self._path(handle.destination)
        temp_path = dest_path.with_name(f".{dest_path.name}.{handle.copy_id[:8]}.tmp")
        bytes_copied = 0

        await aiofiles.os.makedirs(dest_path.parent, exist_ok=True)
        try:
            async with (
                aiofiles.open(source_path, "rb") as src,
                aiofiles.open(temp_path, "wb") as dst,
            ):
                while True:
                    chunk = await src.read(self.chunk_size)
                    if not chunk:
                        break
                    await dst.write(chunk)
                    bytes_copied += len(chunk)

            await aiofiles.os.replace(temp_path, dest_path)
            await self._write_metadata(handle.destination, metadata or {})
            return bytes_copied
        except BaseException:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.remove(temp_path)
            raise

    async def poll_copy_status(self, handle: CopyHandle) -> CopyStatus:
        task = self._copies.get(handle.copy_id)
        if task is None:
            # Unknown handle (e.g. issued before a restart): judge by the destination
            exists = await self.exists(handle.destination)
            return CopyStatus.SUCCESS if exists else CopyStatus.FAILED

        if not task.done():
            return CopyStatus.PENDING

        # Final status is reported once, then the handle is forgotten
        del self._copies[handle.copy_id]
        self._in_flight.pop((handle.source, handle.destination), None)
        if task.cancelled():
            return CopyStatus.ABORTED

        error = task.exception()
        if error is not None:
            translated = _translate_os_error(error, "copy") if isinstance(error, OSError) else error
            if isinstance(translated, TransientStoreError):
                logging.warning(f"{handle} broke off on a transient error: {error}")
                raise CopyInterruptedError(f"{handle} interrupted: {error}") from error
            logging.error(f"{handle} failed: {error}")
            return CopyStatus.FAILED
        return CopyStatus.SUCCESS

    async def abort_copy(self, handle: CopyHandle) -> None:
        task = self._copies.pop(handle.copy_id, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logging.warning(f"Aborted {handle}")
        self._in_flight.pop((handle.source, handle.destination), None)

    async def delete(self, location: StorageLocation) -> bool:
        try:
            await aiofiles.os.remove(self._path(location))
        except FileNotFoundError:
            logging.debug(f"Delete of {location}: already absent")
            return False
        except OSError as e:
            raise _translate_os_error(e, f"delete of {location}") from e

        metadata_path = self._metadata_path(location)
        if await aiofiles.os.path.exists(metadata_path):
            await aiofiles.os.remove(metadata_path)
        return True

    async def fetch_size(self, location: StorageLocation) -> int:
        try:
            stat_result = await aiofiles.os.stat(self._path(location))
        except FileNotFoundError as e:
            raise ObjectNotFoundError(location) from e
        except OSError as e:
            raise _translate_os_error(e, f"stat of {location}") from e
        return stat_result.st_size

    async def exists(self, location: StorageLocation) -> bool:
        return await aiofiles.os.path.isfile(self._path(location))

    async def read(self, location: StorageLocation) -> bytes:
        try:
            async with aiofiles.open(self._path(location), "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(location) from e
        except OSError as e:
            raise _translate_os_error(e, f"read of {location}") from e

    async def write(self, location: StorageLocation, content: bytes) -> None:
        path = self._path(location)
        temp_path = path.with_name(f".{path.name}.write.tmp")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(content)
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            raise _translate_os_error(e, f"write of {location}") from e

    async def list_keys(self, container: str) -> List[str]:
        container_path = self.root / container
        if not await aiofiles.os.path.isdir(container_path):
            return []
        keys = []
        for name in sorted(await aiofiles.os.listdir(container_path)):
            if name.startswith("."):
                continue
            if await aiofiles.os.path.isfile(container_path / name):
                keys.append(name)
        return keys

    async def get_metadata(self, location: StorageLocation) -> Dict[str, str]:
        metadata_path = self._metadata_path(location)
        if not await aiofiles.os.path.exists(metadata_path):
            return {}
        async with aiofiles.open(metadata_path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def _write_metadata(self, location: StorageLocation, metadata: Dict[str, str]) -> None:
        metadata_path = self._metadata_path(location)
        if not metadata:
            if await aiofiles.os.path.exists(metadata_path):
                await aiofiles.os.remove(metadata_path)
            return
        await aiofiles.os.makedirs(metadata_path.parent, exist_ok=True)
        async with aiofiles.open(metadata_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(metadata))

    async def close(self) -> None:
        pending = [task for task in self._copies.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._copies.clear()
        self._in_flight.clear()

    def get_store_info(self) -> dict:
        return {
            "backend": self.__class__.__name__,
            "root": str(self.root),
            "copies_tracked": len(self._copies),
            "copies_in_flight": len(self._in_flight),
        }
