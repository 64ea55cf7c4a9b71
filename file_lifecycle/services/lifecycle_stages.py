"""
Lifecycle Stages - the entry actions of the non-terminal states.

Each stage takes a TaskContext and returns an updated TaskContext, or raises.
Stages never change the task state themselves; the orchestrator records the
transition once a stage has returned.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import CopyFailedError, SourceCleanupError
from file_lifecycle.core.retry_policy import RetryPolicy
from file_lifecycle.models import StorageLocation
from file_lifecycle.services.task_context import TaskContext
from file_lifecycle.storage.copy_verifier import CopyVerifier
from file_lifecycle.storage.object_store import ObjectStore
from file_lifecycle.transform.transform_stage import TransformStage, enforce_record_policy

ARCHIVE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def build_archive_key(name: str, moment: datetime) -> str:
    """Archive key: ``<UTC timestamp, second precision>_<original name>``."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return f"{moment.strftime(ARCHIVE_TIMESTAMP_FORMAT)}_{name}"


class LifecycleStages:
    """Moving, Transforming and Finalizing entry actions plus error routing."""

    def __init__(
        self,
        settings: Settings,
        object_store: ObjectStore,
        transform_stage: TransformStage,
        copy_verifier: CopyVerifier,
        retry_policy: RetryPolicy,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings
        self.object_store = object_store
        self.transform_stage = transform_stage
        self.copy_verifier = copy_verifier
        self.retry_policy = retry_policy
        self._clock = clock

    async def move_to_processing(self, ctx: TaskContext) -> TaskContext:
        source = ctx.task.current_location
        destination = ctx.processing_location

        expected_size = await self._fetch_size(source)
        size = await self.copy_verifier.copy_and_verify(source, destination, expected_size)
        try:
            await self._delete_source(source)
        except Exception as e:
            raise SourceCleanupError(source, destination, e) from e

        logging.info(f"Moved {source} -> {destination} ({size:,} bytes)")
        return ctx.with_task(current_location=destination, size_bytes=size)

    async def transform_content(self, ctx: TaskContext) -> TaskContext:
        location = ctx.task.current_location
        content = await self.retry_policy.run(
            lambda: self.object_store.read(location), f"read of {location}"
        )

        result = await self.transform_stage.transform(content)
        enforce_record_policy(result, self.settings.strict_transform)

        if result.has_failures:
            # Tagged and passed through: the file continues with the raw records
            logging.warning(f"Task {ctx.task.id} {ctx.task.name}: {result.failure_summary()}")

        if result.content != content:
            await self.retry_policy.run(
                lambda: self.object_store.write(location, result.content),
                f"write of {location}",
            )

        logging.info(
            f"Transformed {location} with {self.transform_stage.name} "
            f"({len(result.records)} records, {len(result.failed_records)} failed)"
        )
        return ctx.with_task(size_bytes=len(result.content)).with_changes(
            records_total=len(result.records),
            records_failed=len(result.failed_records),
        )

    async def finalize(self, ctx: TaskContext) -> TaskContext:
        source = ctx.task.current_location
        archive_key = build_archive_key(ctx.task.name, self._clock())
        targets: Dict[str, StorageLocation] = {
            "outbound": ctx.outbound_location,
            "archive": ctx.archive_location(archive_key),
        }

        expected_size = await self._fetch_size(source)
        results = await asyncio.gather(
            *(
                self.copy_verifier.copy_and_verify(source, target, expected_size)
                for target in targets.values()
            ),
            return_exceptions=True,
        )

        failures = [
            f"{label} copy failed: {result}"
            for label, result in zip(targets, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            # Processing-objektet bevares til manuel recovery
            raise CopyFailedError("; ".join(failures))

        await self._delete_source(source)
        logging.info(
            f"Finalized {ctx.task.name}: {targets['outbound']} and {targets['archive']}"
        )
        return ctx.with_task(current_location=targets["outbound"], archive_key=archive_key)

    async def route_to_error(
        self, ctx: TaskContext, error_message: str, retain_source: bool
    ) -> Optional[StorageLocation]:
        """
        Best-effort relocation of the task's object to the error container.

        The error message is attached as object metadata. The pre-failure object
        is deleted only when ``retain_source`` is False and the error copy
        verified. Returns the location of the verified copy in the error
        container, or None when nothing could be relocated. Never raises.
        """
        source = ctx.task.current_location
        destination = ctx.error_location
        metadata = {
            "error-message": error_message[:1024],
            "task-id": str(ctx.task.id),
            "failed-state": ctx.task.state.value,
        }

        try:
            if not await self.object_store.exists(source):
                logging.warning(f"Task {ctx.task.id}: {source} not present, nothing to move to error")
                return None

            size = await self._fetch_size(source)
            await self.copy_verifier.copy_and_verify(source, destination, size, metadata)
        except Exception as e:
            logging.error(f"Task {ctx.task.id}: could not relocate {source} to error container: {e}")
            return None

        logging.info(f"Task {ctx.task.id}: copied {source} -> {destination}")
        if retain_source:
            logging.warning(f"Task {ctx.task.id}: {source} retained for manual recovery")
            return destination

        try:
            await self._delete_source(source)
        except Exception as e:
            logging.error(f"Task {ctx.task.id}: error copy verified but {source} could not be deleted: {e}")
        return destination

    async def discard_source(self, ctx: TaskContext, location: StorageLocation) -> bool:
        """
        Last attempt at deleting a source whose copy has already verified.

        Returns False when the object is still there. Never raises.
        """
        try:
            await self._delete_source(location)
        except Exception as e:
            logging.error(f"Task {ctx.task.id}: {location} left behind and must be removed manually: {e}")
            return False
        logging.info(f"Task {ctx.task.id}: removed leftover {location}")
        return True

    async def _fetch_size(self, location: StorageLocation) -> int:
        return await self.retry_policy.run(
            lambda: self.object_store.fetch_size(location), f"size check of {location}"
        )

    async def _delete_source(self, location: StorageLocation) -> None:
        deleted = await self.retry_policy.run(
            lambda: self.object_store.delete(location), f"delete of {location}"
        )
        if not deleted:
            logging.info(f"{location} was already deleted")
