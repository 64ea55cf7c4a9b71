"""
Lifecycle Orchestrator - drives one file from inbound to a terminal state.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import AuditLogError, CopyFailedError, SourceCleanupError
from file_lifecycle.core.lifecycle_state_machine import LifecycleStateMachine
from file_lifecycle.core.retry_policy import RetryPolicy
from file_lifecycle.models import FileTask, StorageLocation, TaskState
from file_lifecycle.services.lifecycle_stages import LifecycleStages
from file_lifecycle.services.task_context import ProcessResult, TaskContext
from file_lifecycle.storage.object_store import ObjectStore

EntryAction = Callable[[TaskContext], Awaitable[TaskContext]]


class LifecycleOrchestrator:
    """
    Executes the lifecycle state machine for one FileTask at a time per call.

    Received -> Moving -> Transforming -> Finalizing -> Completed, with a
    direct edge to Failed from every non-terminal state. Every stage error is
    converted to Failed; only AuditLogError propagates to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        object_store: ObjectStore,
        state_machine: LifecycleStateMachine,
        stages: LifecycleStages,
        retry_policy: RetryPolicy,
    ):
        self.settings = settings
        self.object_store = object_store
        self.state_machine = state_machine
        self.stages = stages
        self.retry_policy = retry_policy

        self._entry_actions: Dict[TaskState, EntryAction] = {
            TaskState.MOVING: stages.move_to_processing,
            TaskState.TRANSFORMING: stages.transform_content,
            TaskState.FINALIZING: stages.finalize,
        }
        self._active_tasks: Set[int] = set()

        logging.debug("LifecycleOrchestrator initialized")

    @property
    def active_task_ids(self) -> Set[int]:
        return set(self._active_tasks)

    async def process_file(self, file_name: str) -> ProcessResult:
        """
        Entry point for the trigger interface.

        Raises:
            AuditLogError: The audit trail could not be written; processing halted.
        """
        source = StorageLocation(container=self.settings.inbound_container, key=file_name)

        size_bytes = 0
        receive_error: Optional[str] = None
        try:
            size_bytes = await self.retry_policy.run(
                lambda: self.object_store.fetch_size(source), f"size check of {source}"
            )
        except Exception as e:
            receive_error = str(e)

        # Start skal være committet før nogen storage-mutation
        task = await self.state_machine.begin(
            name=file_name,
            size_bytes=size_bytes,
            source_container=source.container,
            package_label=self.settings.package_label,
        )
        ctx = TaskContext(task=task, settings=self.settings)

        self._active_tasks.add(task.id)
        try:
            if receive_error is not None:
                final = await self._fail(ctx, receive_error, retain_source=False)
                return ProcessResult(task=final)

            ctx = await self._run(ctx)
            return ProcessResult(
                task=ctx.task,
                records_total=ctx.records_total,
                records_failed=ctx.records_failed,
            )
        finally:
            self._active_tasks.discard(task.id)

    async def _run(self, ctx: TaskContext) -> TaskContext:
        while not ctx.task.is_terminal:
            next_state = self.state_machine.next_state(ctx.task.state)
            ctx = ctx.with_changes(
                task=await self.state_machine.transition(task=ctx.task, new_state=next_state)
            )
            if ctx.task.is_terminal:
                break

            action = self._entry_actions[ctx.task.state]
            try:
                ctx = await action(ctx)
            except AuditLogError:
                raise
            except SourceCleanupError as e:
                # Den verificerede kopi er taskens placering fra nu af
                ctx = ctx.with_task(current_location=e.verified_copy)
                await self.stages.discard_source(ctx, e.source)
                final = await self._fail(ctx, str(e), retain_source=False)
                return ctx.with_changes(task=final)
            except Exception as e:
                # Processing-objektet bevares ved fejl i Finalizing
                retain = isinstance(e, CopyFailedError) or ctx.task.state == TaskState.FINALIZING
                final = await self._fail(ctx, str(e), retain_source=retain)
                return ctx.with_changes(task=final)

        if ctx.task.state == TaskState.COMPLETED:
            logging.info(
                f"Task {ctx.task.id} completed: {ctx.task.name} -> "
                f"{ctx.task.current_location} (archive key {ctx.task.archive_key})"
            )
        return ctx

    async def _fail(self, ctx: TaskContext, error: str, retain_source: bool) -> FileTask:
        failed_in = ctx.task.state
        error_message = f"{failed_in.value} failed: {error}"
        logging.error(f"Task {ctx.task.id} {ctx.task.name}: {error_message}")

        error_copy = await self.stages.route_to_error(ctx, error_message, retain_source)

        if error_copy is None:
            location = ctx.task.current_location
            destination_container = location.container
        elif retain_source:
            location = ctx.task.current_location
            destination_container = error_copy.container
        else:
            location = error_copy
            destination_container = error_copy.container

        return await self.state_machine.transition(
            task=ctx.task,
            new_state=TaskState.FAILED,
            destination_container=destination_container,
            current_location=location,
            error_message=error_message,
        )

    def get_orchestrator_info(self) -> dict:
        return {
            "active_tasks": len(self._active_tasks),
            "transform": self.stages.transform_stage.get_transform_info(),
            "strict_transform": self.settings.strict_transform,
            "retry": self.retry_policy.get_retry_info(),
            "store": self.object_store.get_store_info(),
        }
