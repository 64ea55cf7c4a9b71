"""
Domain events published while a FileTask moves through its lifecycle.
"""

from dataclasses import dataclass
from typing import Optional

from file_lifecycle.core.events.domain_event import DomainEvent
from file_lifecycle.models import TaskState


@dataclass(frozen=True)
class TaskStateChangedEvent(DomainEvent):
    """Published after every recorded state transition."""

    task_id: int
    file_name: str
    old_state: Optional[TaskState]
    new_state: TaskState
    container: str
    key: str


@dataclass(frozen=True)
class TaskFinishedEvent(DomainEvent):
    """Published once when a task reaches Completed or Failed."""

    task_id: int
    file_name: str
    state: TaskState
    destination_container: str
    error_message: str = ""


@dataclass(frozen=True)
class AuditLogUnavailableEvent(DomainEvent):
    """Published when processing halts because the audit log cannot be written."""

    file_name: str
    error_message: str
