"""
Task context and result types passed between lifecycle stages.
"""

from dataclasses import dataclass, replace
from typing import Optional

from file_lifecycle.config import Settings
from file_lifecycle.models import FileTask, StorageLocation, TaskState


@dataclass(frozen=True)
class TaskContext:
    """
    Immutable request context for one FileTask.

    Every stage receives a context and returns an updated one; nothing is
    shared between tasks except the store and the audit log.
    """

    task: FileTask
    settings: Settings
    records_total: int = 0
    records_failed: int = 0

    def with_task(self, **changes) -> "TaskContext":
        return replace(self, task=self.task.evolve(**changes))

    def with_changes(self, **changes) -> "TaskContext":
        return replace(self, **changes)

    @property
    def processing_location(self) -> StorageLocation:
        return StorageLocation(container=self.settings.processing_container, key=self.task.name)

    @property
    def outbound_location(self) -> StorageLocation:
        return StorageLocation(container=self.settings.outbound_container, key=self.task.name)

    @property
    def error_location(self) -> StorageLocation:
        return StorageLocation(container=self.settings.error_container, key=self.task.name)

    def archive_location(self, archive_key: str) -> StorageLocation:
        return StorageLocation(container=self.settings.archive_container, key=archive_key)


@dataclass
class ProcessResult:
    """Outcome of driving one file through the lifecycle."""

    task: FileTask
    records_total: int = 0
    records_failed: int = 0

    @property
    def success(self) -> bool:
        return self.task.state == TaskState.COMPLETED

    @property
    def file_name(self) -> str:
        return self.task.name

    @property
    def error_message(self) -> Optional[str]:
        return self.task.error_message or None

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        extra = f" ({self.task.error_message})" if self.task.error_message else ""
        records = (
            f", {self.records_failed}/{self.records_total} records failed" if self.records_total else ""
        )
        return f"ProcessResult({status}, task={self.task.id}, {self.task.name}{records}{extra})"
