import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from file_lifecycle.audit.audit_log import AuditLog
from file_lifecycle.core.events.event_bus import DomainEventBus
from file_lifecycle.core.events.task_events import TaskFinishedEvent, TaskStateChangedEvent
from file_lifecycle.core.exceptions import InvalidTransitionError
from file_lifecycle.models import FileTask, StorageLocation, TaskState

# Success edges of the lifecycle. Every non-terminal state may also go to FAILED.
NEXT_STATE: Dict[TaskState, TaskState] = {
    TaskState.RECEIVED: TaskState.MOVING,
    TaskState.MOVING: TaskState.TRANSFORMING,
    TaskState.TRANSFORMING: TaskState.FINALIZING,
    TaskState.FINALIZING: TaskState.COMPLETED,
}


class LifecycleStateMachine:
    """
    Central "dørmand" for alle FileTask status-overgange.

    Dette er den ENESTE klasse i systemet, der må:
    1. Validere en status-overgang.
    2. Skrive overgangen til audit loggen (præcis én post pr. overgang).
    3. Publicere TaskStateChangedEvent / TaskFinishedEvent.

    FileTask er immutable, så hver overgang returnerer en ny instans.
    Fejl fra audit loggen (AuditLogError) propageres uændret.
    """

    def __init__(self, audit_log: AuditLog, event_bus: DomainEventBus):
        self._audit_log = audit_log
        self._event_bus = event_bus

        self._transitions: Dict[TaskState, Set[TaskState]] = {
            state: {next_state, TaskState.FAILED} for state, next_state in NEXT_STATE.items()
        }
        self._transitions[TaskState.COMPLETED] = set()
        self._transitions[TaskState.FAILED] = set()
        logging.info("LifecycleStateMachine initialiseret med %s overgangsregler", len(self._transitions))

    @staticmethod
    def next_state(state: TaskState) -> Optional[TaskState]:
        """The success successor of a state, or None for terminal states."""
        return NEXT_STATE.get(state)

    def can_transition(self, from_state: TaskState, to_state: TaskState) -> bool:
        return to_state in self._transitions.get(from_state, set())

    async def begin(
        self,
        *,
        name: str,
        size_bytes: int,
        source_container: str,
        package_label: str,
    ) -> FileTask:
        """Record the start of processing and return the task in state Received."""
        task_id = await self._audit_log.start(name, size_bytes, source_container, package_label)
        task = FileTask(
            id=task_id,
            name=name,
            size_bytes=size_bytes,
            state=TaskState.RECEIVED,
            current_location=StorageLocation(container=source_container, key=name),
            started_at=datetime.now(timezone.utc),
        )
        logging.info(f"Task {task_id} received: {name} ({size_bytes:,} bytes)")
        await self._event_bus.publish(
            TaskStateChangedEvent(
                task_id=task_id,
                file_name=name,
                old_state=None,
                new_state=TaskState.RECEIVED,
                container=source_container,
                key=name,
            )
        )
        return task

    async def transition(
        self,
        *,  # Force all parameters to be keyword-only
        task: FileTask,
        new_state: TaskState,
        destination_container: Optional[str] = None,
        **changes,
    ) -> FileTask:
        """
        Validates, records and announces one state transition.

        Args:
            task: The task in its current state.
            new_state: The requested state.
            destination_container: Container reported in the completion record
                (terminal states only, defaults to the task's current container).
            **changes: Other FileTask fields to update (e.g. current_location).

        Returns:
            The task in its new state.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
            AuditLogError: If the transition could not be recorded.
        """
        old_state = task.state
        if not self.can_transition(old_state, new_state):
            raise InvalidTransitionError(task.id, old_state.value, new_state.value)

        # Fejlbesked hører kun til FAILED
        if new_state != TaskState.FAILED:
            changes["error_message"] = ""
        if new_state.is_terminal:
            changes.setdefault("completed_at", datetime.now(timezone.utc))

        updated = task.evolve(state=new_state, **changes)

        if new_state.is_terminal:
            destination = destination_container or updated.current_location.container
            await self._audit_log.complete(
                updated.id,
                new_state,
                destination,
                updated.error_message,
                location=updated.current_location,
                size_bytes=updated.size_bytes,
            )
        else:
            await self._audit_log.record_transition(
                updated.id, new_state, updated.current_location, updated.size_bytes
            )

        logging.info(f"Transition: task {updated.id} {updated.name} | {old_state.value} -> {new_state.value}")

        await self._event_bus.publish(
            TaskStateChangedEvent(
                task_id=updated.id,
                file_name=updated.name,
                old_state=old_state,
                new_state=new_state,
                container=updated.current_location.container,
                key=updated.current_location.key,
            )
        )
        if new_state.is_terminal:
            await self._event_bus.publish(
                TaskFinishedEvent(
                    task_id=updated.id,
                    file_name=updated.name,
                    state=new_state,
                    destination_container=destination,
                    error_message=updated.error_message,
                )
            )
        return updated
