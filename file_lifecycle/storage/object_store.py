"""
Object Store Client interface consumed by the orchestrator.

Copies are asynchronous: ``copy`` returns a handle immediately and the
caller polls ``poll_copy_status`` until the copy reaches a final status.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from file_lifecycle.models import CopyStatus, StorageLocation


@dataclass(frozen=True)
class CopyHandle:
    """Opaque token for an in-progress copy."""

    source: StorageLocation
    destination: StorageLocation
    copy_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"copy {self.copy_id[:8]} {self.source} -> {self.destination}"


class ObjectStore(ABC):
    """
    Copy/delete/fetch-metadata operations against named containers.

    Contract:
    - ``copy`` re-issued for the same source/destination while the first
      copy is still pending returns the same handle.
    - An existing destination is overwritten.
    - ``delete`` of an absent object returns False and never raises.
    - Temporary unavailability raises TransientStoreError.
    """

    @abstractmethod
    async def copy(
        self,
        source: StorageLocation,
        destination: StorageLocation,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CopyHandle:
        ...

    @abstractmethod
    async def poll_copy_status(self, handle: CopyHandle) -> CopyStatus:
        ...

    @abstractmethod
    async def delete(self, location: StorageLocation) -> bool:
        """Delete an object. Returns True if it existed, False if it was already gone."""

    @abstractmethod
    async def fetch_size(self, location: StorageLocation) -> int:
        """Size in bytes. Raises ObjectNotFoundError for absent objects."""

    @abstractmethod
    async def exists(self, location: StorageLocation) -> bool:
        ...

    @abstractmethod
    async def read(self, location: StorageLocation) -> bytes:
        ...

    @abstractmethod
    async def write(self, location: StorageLocation, content: bytes) -> None:
        ...

    @abstractmethod
    async def list_keys(self, container: str) -> List[str]:
        ...

    @abstractmethod
    async def get_metadata(self, location: StorageLocation) -> Dict[str, str]:
        """User metadata attached to an object by ``copy``."""

    async def abort_copy(self, handle: CopyHandle) -> None:
        """Best-effort cancellation of a copy that is no longer awaited."""

    async def close(self) -> None:
        """Release resources held by the client."""

    def get_store_info(self) -> dict:
        return {"backend": self.__class__.__name__}
