"""
Audit Log - the durable record of every FileTask lifecycle event.

The log is the source of truth for task history: a FileTask is transient and
can always be rebuilt by replaying the transitions stored for its id.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from file_lifecycle.core.exceptions import AuditLogError
from file_lifecycle.models import (
    AuditEntry,
    AuditTransition,
    FileTask,
    StorageLocation,
    TaskState,
)


class AuditLog(ABC):
    """Interface consumed by the orchestrator. Every write failure raises AuditLogError."""

    @abstractmethod
    async def start(
        self, name: str, size_bytes: int, source_container: str, package_label: str
    ) -> int:
        """Durably record the start of processing and return the new task id."""

    @abstractmethod
    async def record_transition(
        self, task_id: int, state: TaskState, location: StorageLocation, size_bytes: int
    ) -> None:
        """Record an intermediate (non-terminal) state transition."""

    @abstractmethod
    async def complete(
        self,
        task_id: int,
        state: TaskState,
        destination_container: str,
        error_message: str = "",
        location: Optional[StorageLocation] = None,
        size_bytes: Optional[int] = None,
    ) -> None:
        """Record the terminal state of a task."""

    @abstractmethod
    async def get_entry(self, task_id: int) -> Optional[AuditEntry]:
        ...

    @abstractmethod
    async def get_transitions(self, task_id: int) -> List[AuditTransition]:
        ...

    @abstractmethod
    async def find_unfinished(self) -> List[AuditEntry]:
        """Entries that never received a terminal completion record."""

    async def close(self) -> None:
        """Release connections held by the log. Nothing to release by default."""

    async def replay(self, task_id: int) -> Optional[FileTask]:
        """Rebuild a FileTask from its audit entry and recorded transitions."""
        entry = await self.get_entry(task_id)
        if entry is None:
            return None

        task = FileTask(
            id=entry.id,
            name=entry.file_name,
            size_bytes=entry.size_bytes,
            state=TaskState.RECEIVED,
            current_location=StorageLocation(
                container=entry.source_container, key=entry.file_name
            ),
            started_at=entry.started_at,
        )
        for transition in await self.get_transitions(task_id):
            task = task.evolve(
                state=transition.state,
                current_location=StorageLocation(
                    container=transition.container, key=transition.key
                ),
                size_bytes=transition.size_bytes,
                error_message=transition.error_message,
            )
        if entry.is_finished:
            task = task.evolve(
                state=entry.state,
                error_message=entry.error_message,
                completed_at=entry.completed_at,
            )
        return task


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryAuditLog(AuditLog):
    """
    Async-safe, in-memory audit log.

    Used for tests and for running without a database. Ids start at
    ``first_id`` and increase by one per started task.
    """

    def __init__(self, first_id: int = 1):
        self._entries: Dict[int, AuditEntry] = {}
        self._transitions: Dict[int, List[AuditTransition]] = {}
        self._ids = itertools.count(first_id)
        self._lock = asyncio.Lock()
        logging.info("InMemoryAuditLog initialized")

    async def start(
        self, name: str, size_bytes: int, source_container: str, package_label: str
    ) -> int:
        async with self._lock:
            task_id = next(self._ids)
            now = _utcnow()
            self._entries[task_id] = AuditEntry(
                id=task_id,
                file_name=name,
                size_bytes=size_bytes,
                source_container=source_container,
                package_label=package_label,
                started_at=now,
            )
            self._transitions[task_id] = [
                AuditTransition(
                    task_id=task_id,
                    sequence=1,
                    state=TaskState.RECEIVED,
                    container=source_container,
                    key=name,
                    size_bytes=size_bytes,
                    recorded_at=now,
                )
            ]
            return task_id

    async def record_transition(
        self, task_id: int, state: TaskState, location: StorageLocation, size_bytes: int
    ) -> None:
        async with self._lock:
            entry = self._require(task_id)
            self._append(task_id, state, location, size_bytes)
            self._entries[task_id] = entry.model_copy(
                update={"state": state, "size_bytes": size_bytes}
            )

    async def complete(
        self,
        task_id: int,
        state: TaskState,
        destination_container: str,
        error_message: str = "",
        location: Optional[StorageLocation] = None,
        size_bytes: Optional[int] = None,
    ) -> None:
        async with self._lock:
            entry = self._require(task_id)
            if entry.is_finished:
                raise AuditLogError(
                    f"Task {task_id} already completed with state {entry.state.value}"
                )
            size = entry.size_bytes if size_bytes is None else size_bytes
            if location is None:
                location = StorageLocation(container=destination_container, key=entry.file_name)
            transition = self._append(task_id, state, location, size, error_message)
            self._entries[task_id] = entry.model_copy(
                update={
                    "state": state,
                    "size_bytes": size,
                    "destination_container": destination_container,
                    "completed_at": transition.recorded_at,
                    "error_message": error_message,
                }
            )

    async def get_entry(self, task_id: int) -> Optional[AuditEntry]:
        async with self._lock:
            return self._entries.get(task_id)

    async def get_transitions(self, task_id: int) -> List[AuditTransition]:
        async with self._lock:
            return list(self._transitions.get(task_id, []))

    async def find_unfinished(self) -> List[AuditEntry]:
        async with self._lock:
            return [entry for entry in self._entries.values() if not entry.is_finished]

    def _require(self, task_id: int) -> AuditEntry:
        entry = self._entries.get(task_id)
        if entry is None:
            raise AuditLogError(f"No audit entry with id {task_id}")
        return entry

    def _append(
        self,
        task_id: int,
        state: TaskState,
        location: StorageLocation,
        size_bytes: int,
        error_message: str = "",
    ) -> AuditTransition:
        history = self._transitions.setdefault(task_id, [])
        transition = AuditTransition(
            task_id=task_id,
            sequence=len(history) + 1,
            state=state,
            container=location.container,
            key=location.key,
            size_bytes=size_bytes,
            recorded_at=_utcnow(),
            error_message=error_message,
        )
        history.append(transition)
        return transition
