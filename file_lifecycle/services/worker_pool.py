import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

from file_lifecycle.config import Settings
from file_lifecycle.core.events.event_bus import DomainEventBus
from file_lifecycle.core.events.task_events import AuditLogUnavailableEvent
from file_lifecycle.core.exceptions import AuditLogError
from file_lifecycle.services.orchestrator import LifecycleOrchestrator
from file_lifecycle.services.task_context import ProcessResult


class LifecycleWorkerPool:
    """
    Queue of file names consumed by ``max_concurrent_tasks`` workers.

    Each FileTask is driven by exactly one worker from start to terminal state.
    No ordering is guaranteed between tasks handled by different workers.
    """

    def __init__(
        self,
        settings: Settings,
        orchestrator: LifecycleOrchestrator,
        event_bus: DomainEventBus,
        history_size: int = 100,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.event_bus = event_bus

        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._running = False
        self._worker_count = max(1, settings.max_concurrent_tasks)
        self._recent_results: Deque[ProcessResult] = deque(maxlen=history_size)

        self._total_submitted = 0
        self._total_completed = 0
        self._total_failed = 0
        self._audit_failures = 0
        self.last_audit_failure_at: Optional[datetime] = None

        logging.info(f"LifecycleWorkerPool initialiseret med {self._worker_count} workers")

    @property
    def is_running(self) -> bool:
        return self._running

    async def submit(self, file_name: str) -> None:
        """Trigger interface: queue a newly observed inbound file."""
        await self._queue.put(file_name)
        self._total_submitted += 1
        logging.info(f"Queued {file_name} (queue size {self._queue.qsize()})")

    async def start_workers(self) -> None:
        if self._running:
            logging.warning("Workers are already running")
            return

        self._running = True
        for i in range(self._worker_count):
            worker_task = asyncio.create_task(
                self._worker_loop(f"worker-{i + 1}"), name=f"lifecycle-worker-{i + 1}"
            )
            self._workers.append(worker_task)

        logging.info(f"Started {len(self._workers)} lifecycle workers")

    async def stop_workers(self) -> None:
        if not self._running:
            return

        self._running = False
        logging.info("Stopping lifecycle workers...")

        for worker in self._workers:
            if not worker.done():
                worker.cancel()

        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers.clear()
        logging.info("All lifecycle workers stopped")

    async def join(self) -> None:
        """Wait until every queued file has been processed."""
        await self._queue.join()

    async def _worker_loop(self, worker_id: str) -> None:
        while self._running:
            file_name = await self._queue.get()
            try:
                await self._process(worker_id, file_name)
            finally:
                self._queue.task_done()

    async def _process(self, worker_id: str, file_name: str) -> None:
        logging.debug(f"{worker_id} processing {file_name}")
        try:
            result = await self.orchestrator.process_file(file_name)
        except AuditLogError as e:
            self._audit_failures += 1
            self.last_audit_failure_at = datetime.now()
            logging.critical(
                f"AUDIT LOG UNAVAILABLE - processing of {file_name} halted, operator action required: {e}"
            )
            await self.event_bus.publish(
                AuditLogUnavailableEvent(file_name=file_name, error_message=str(e))
            )
            return
        except Exception as e:
            logging.error(f"{worker_id} unexpected error processing {file_name}: {e}", exc_info=True)
            return

        self._recent_results.append(result)
        if result.success:
            self._total_completed += 1
        else:
            self._total_failed += 1
        logging.info(f"{worker_id}: {result}")

    def get_recent_results(self) -> List[ProcessResult]:
        return list(self._recent_results)

    def get_pool_info(self) -> dict:
        return {
            "running": self._running,
            "workers": self._worker_count,
            "queue_size": self._queue.qsize(),
            "total_submitted": self._total_submitted,
            "total_completed": self._total_completed,
            "total_failed": self._total_failed,
            "audit_failures": self._audit_failures,
            "last_audit_failure_at": self.last_audit_failure_at.isoformat()
            if self.last_audit_failure_at
            else None,
        }
