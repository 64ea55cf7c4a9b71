from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskState(str, Enum):
    """
    Status for en FileTask gennem hele livscyklussen.

    Normal Workflow: Received -> Moving -> Transforming -> Finalizing -> Completed
    Alternative: -> Failed (fra enhver ikke-terminal status)
    """

    RECEIVED = "Received"  # Start registreret i audit log, id tildelt
    MOVING = "Moving"  # Kopieres fra inbound til processing
    TRANSFORMING = "Transforming"  # Transform stage kører over indholdet
    FINALIZING = "Finalizing"  # Kopieres til outbound og archive
    COMPLETED = "Completed"  # Terminal: leveret og arkiveret
    FAILED = "Failed"  # Terminal: flyttet til error (best-effort)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


class CopyStatus(str, Enum):
    """Status for an asynchronous copy as reported by the object store."""

    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @property
    def is_final(self) -> bool:
        return self != CopyStatus.PENDING


class StorageLocation(BaseModel):
    """A (container, key) pair addressing one object in the store."""

    model_config = ConfigDict(frozen=True)

    container: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)

    def __str__(self) -> str:
        return f"{self.container}/{self.key}"


class FileTask(BaseModel):
    """
    Orchestratorens in-flight repræsentation af én fils rejse gennem pipelinen.

    Objektet er immutable; hver ændring giver en ny instans via ``evolve``.
    Den varige sandhed er audit loggen, som FileTask kan genopbygges fra.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Identifier assigned by the audit log at start")
    name: str = Field(..., min_length=1, description="Logical file name, stable across stages")
    size_bytes: int = Field(default=0, ge=0, description="Size at last observed location")
    state: TaskState = Field(default=TaskState.RECEIVED)
    current_location: StorageLocation
    error_message: str = Field(default="", description="Only set when state is Failed")
    archive_key: Optional[str] = Field(default=None, description="Key used in the archive container")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def evolve(self, **changes) -> "FileTask":
        """Return a copy of this task with the given fields replaced."""
        return self.model_copy(update=changes)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class AuditEntry(BaseModel):
    """One row of the persisted audit log: the start record plus its completion."""

    id: int
    file_name: str
    size_bytes: int = 0
    source_container: str
    package_label: str
    started_at: datetime
    state: TaskState = TaskState.RECEIVED
    destination_container: Optional[str] = None
    completed_at: Optional[datetime] = None
    error_message: str = ""

    @property
    def is_finished(self) -> bool:
        return self.state.is_terminal


class AuditTransition(BaseModel):
    """One state transition recorded for a task, in the order it happened."""

    task_id: int
    sequence: int
    state: TaskState
    container: str
    key: str
    size_bytes: int = 0
    recorded_at: datetime
    error_message: str = ""


class TaskNotification(BaseModel):
    """Payload sent to the external notifier when a task reaches a terminal state."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName")
    state: TaskState
    timestamp: datetime
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
