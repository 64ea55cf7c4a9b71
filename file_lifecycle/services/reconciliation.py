"""
Reconciliation of audit entries that never reached a terminal state.

An entry left in Received, Moving, Transforming or Finalizing after a crash
marks a task needing manual attention. A Finalizing orphan may have one,
both or neither of its outbound/archive copies, so the report lists every
container that still holds the file.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from file_lifecycle.audit.audit_log import AuditLog
from file_lifecycle.config import Settings
from file_lifecycle.models import AuditEntry, AuditTransition, StorageLocation, TaskState
from file_lifecycle.storage.object_store import ObjectStore


@dataclass
class OrphanedTask:
    entry: AuditEntry
    last_transition: Optional[AuditTransition]
    present_in: List[str] = field(default_factory=list)
    archive_keys: List[str] = field(default_factory=list)

    @property
    def last_state(self) -> TaskState:
        return self.last_transition.state if self.last_transition else self.entry.state

    def to_dict(self) -> dict:
        return {
            "id": self.entry.id,
            "fileName": self.entry.file_name,
            "lastState": self.last_state.value,
            "startedAt": self.entry.started_at.isoformat(),
            "presentIn": self.present_in,
            "archiveKeys": self.archive_keys,
        }


class ReconciliationService:
    def __init__(self, settings: Settings, audit_log: AuditLog, object_store: ObjectStore):
        self.settings = settings
        self.audit_log = audit_log
        self.object_store = object_store

    async def find_orphans(self, exclude_ids: Iterable[int] = ()) -> List[OrphanedTask]:
        """Unfinished audit entries, minus tasks currently being processed."""
        excluded = set(exclude_ids)
        orphans = []
        for entry in await self.audit_log.find_unfinished():
            if entry.id in excluded:
                continue
            transitions = await self.audit_log.get_transitions(entry.id)
            orphan = OrphanedTask(
                entry=entry,
                last_transition=transitions[-1] if transitions else None,
            )
            await self._locate(orphan)
            orphans.append(orphan)
        return orphans

    async def _locate(self, orphan: OrphanedTask) -> None:
        name = orphan.entry.file_name
        containers = [
            self.settings.inbound_container,
            self.settings.processing_container,
            self.settings.outbound_container,
            self.settings.error_container,
        ]
        try:
            for container in containers:
                if await self.object_store.exists(StorageLocation(container=container, key=name)):
                    orphan.present_in.append(container)

            if orphan.last_state == TaskState.FINALIZING:
                suffix = f"_{name}"
                keys = await self.object_store.list_keys(self.settings.archive_container)
                orphan.archive_keys = [key for key in keys if key.endswith(suffix)]
                if orphan.archive_keys:
                    orphan.present_in.append(self.settings.archive_container)
        except Exception as e:
            logging.warning(f"Could not locate objects for orphaned task {orphan.entry.id}: {e}")

    async def reconcile(
        self, mark_abandoned: bool = False, exclude_ids: Iterable[int] = ()
    ) -> List[OrphanedTask]:
        """
        Report orphaned tasks and optionally close them as Failed.

        Objects are never moved here; recovery of the bytes stays manual.
        """
        orphans = await self.find_orphans(exclude_ids)
        for orphan in orphans:
            logging.warning(
                f"Orphaned task {orphan.entry.id} {orphan.entry.file_name}: "
                f"stopped in {orphan.last_state.value}, present in {orphan.present_in or 'no container'}"
            )
            if mark_abandoned:
                await self._mark_abandoned(orphan)

        if orphans:
            logging.warning(f"Reconciliation found {len(orphans)} orphaned task(s)")
        else:
            logging.info("Reconciliation found no orphaned tasks")
        return orphans

    async def _mark_abandoned(self, orphan: OrphanedTask) -> None:
        transition = orphan.last_transition
        location = (
            StorageLocation(container=transition.container, key=transition.key)
            if transition
            else StorageLocation(container=orphan.entry.source_container, key=orphan.entry.file_name)
        )
        message = (
            f"Abandoned during {orphan.last_state.value}: "
            f"manual reconciliation required (present in: {', '.join(orphan.present_in) or 'none'})"
        )
        await self.audit_log.complete(
            orphan.entry.id,
            TaskState.FAILED,
            location.container,
            message,
            location=location,
        )
        logging.warning(f"Task {orphan.entry.id} marked Failed: {message}")
