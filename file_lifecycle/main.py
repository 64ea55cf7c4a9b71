import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request

from .api import tasks
from .dependencies import (
    get_audit_log,
    get_inbound_watcher,
    get_notification_service,
    get_object_store,
    get_orchestrator,
    get_reconciliation_service,
    get_settings,
    get_worker_pool,
)
from .logging_config import setup_logging
from .services.orchestrator import LifecycleOrchestrator
from .services.worker_pool import LifecycleWorkerPool

# Global reference til background tasks
_background_tasks = []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    settings = get_settings()
    setup_logging(settings)

    logging.info("File Lifecycle Agent starting up...")
    logging.info(f"Store backend: {settings.store_backend}")
    logging.info(
        f"Containers: {settings.inbound_container} -> {settings.processing_container} -> "
        f"{settings.outbound_container}/{settings.archive_container} (errors: {settings.error_container})"
    )

    notification_service = get_notification_service()
    await notification_service.start()

    # Reconciliation before workers start, so nothing is in flight yet
    if settings.reconcile_on_startup:
        await get_reconciliation_service().reconcile(
            mark_abandoned=settings.reconcile_mark_abandoned
        )

    worker_pool = get_worker_pool()
    await worker_pool.start_workers()

    inbound_watcher = None
    if settings.enable_inbound_watcher:
        inbound_watcher = get_inbound_watcher()
        watcher_task = asyncio.create_task(inbound_watcher.start_scanning())
        _background_tasks.append(watcher_task)
        logging.info("InboundWatcher startet som background task")

    yield

    logging.info("File Lifecycle Agent shutting down...")

    if inbound_watcher:
        await inbound_watcher.stop_scanning()
    await worker_pool.stop_workers()

    for task in _background_tasks:
        task.cancel()
    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()

    await notification_service.stop()
    await get_object_store().close()
    await get_audit_log().close()
    logging.info("Alle background tasks stoppet")


app = FastAPI(
    title="File Lifecycle Agent",
    description="Flytter uploadede filer fra inbound gennem processing til outbound/archive eller error",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logging.debug(f"Incoming request: {request.method} {request.url.path}")
    response = await call_next(request)
    logging.debug(f"Response: {response.status_code} for {request.url.path}")
    return response


app.include_router(tasks.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "File Lifecycle Agent er kørende"}


@app.get("/health")
async def health(
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    worker_pool: LifecycleWorkerPool = Depends(get_worker_pool),
):
    """Detaljeret health check."""
    return {
        "status": "healthy" if worker_pool.is_running else "starting",
        "service": "file-lifecycle-agent",
        "active_tasks": len(orchestrator.active_task_ids),
    }


if __name__ == "__main__":
    uvicorn.run(
        "file_lifecycle.main:app", host="0.0.0.0", port=8000, reload=False, log_level="info"
    )
