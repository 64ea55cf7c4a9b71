from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..audit.audit_log import AuditLog
from ..core.exceptions import AuditLogError
from ..dependencies import (
    get_audit_log,
    get_orchestrator,
    get_reconciliation_service,
    get_worker_pool,
)
from ..models import AuditTransition, FileTask
from ..services.orchestrator import LifecycleOrchestrator
from ..services.reconciliation import ReconciliationService
from ..services.worker_pool import LifecycleWorkerPool

router = APIRouter(prefix="/api", tags=["tasks"])


class FileTrigger(BaseModel):
    """Body of the trigger call made when a new object appears in inbound."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName", min_length=1)


@router.post("/files", status_code=status.HTTP_202_ACCEPTED)
async def trigger_file(
    trigger: FileTrigger,
    worker_pool: LifecycleWorkerPool = Depends(get_worker_pool),
) -> dict:
    """
    Queue a newly uploaded inbound file for processing.

    HTTP Status Codes:
        202: File queued
        400: Invalid file name
    """
    if "/" in trigger.file_name or trigger.file_name in (".", ".."):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file name: {trigger.file_name}",
        )
    await worker_pool.submit(trigger.file_name)
    return {"queued": True, "fileName": trigger.file_name}


@router.get("/tasks/{task_id}", response_model=FileTask)
async def get_task(task_id: int, audit_log: AuditLog = Depends(get_audit_log)) -> FileTask:
    """Task state reconstructed by replaying its audit log entries."""
    try:
        task = await audit_log.replay(task_id)
    except AuditLogError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Task {task_id} not found")
    return task


@router.get("/tasks/{task_id}/history", response_model=List[AuditTransition])
async def get_task_history(
    task_id: int, audit_log: AuditLog = Depends(get_audit_log)
) -> List[AuditTransition]:
    try:
        transitions = await audit_log.get_transitions(task_id)
    except AuditLogError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if not transitions:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Task {task_id} not found")
    return transitions


@router.get("/status")
async def get_status(
    worker_pool: LifecycleWorkerPool = Depends(get_worker_pool),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    return {
        "workers": worker_pool.get_pool_info(),
        "orchestrator": orchestrator.get_orchestrator_info(),
    }


@router.get("/reconciliation")
async def get_reconciliation_report(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Unfinished audit entries that are not being processed right now."""
    try:
        orphans = await reconciliation.find_orphans(exclude_ids=orchestrator.active_task_ids)
    except AuditLogError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"count": len(orphans), "orphans": [orphan.to_dict() for orphan in orphans]}
