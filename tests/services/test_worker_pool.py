import asyncio

import pytest
from unittest.mock import AsyncMock

from file_lifecycle.core.events.event_bus import DomainEventBus
from file_lifecycle.core.events.task_events import AuditLogUnavailableEvent
from file_lifecycle.core.exceptions import AuditLogError
from file_lifecycle.services.orchestrator import LifecycleOrchestrator
from file_lifecycle.services.worker_pool import LifecycleWorkerPool
from tests.fakes import FakeObjectStore


@pytest.fixture
async def pool_factory(settings):
    pools = []

    def _create(orchestrator, event_bus=None, workers=2):
        pool = LifecycleWorkerPool(
            settings=settings.model_copy(update={"max_concurrent_tasks": workers}),
            orchestrator=orchestrator,
            event_bus=event_bus or DomainEventBus(),
        )
        pools.append(pool)
        return pool

    yield _create

    for pool in pools:
        await pool.stop_workers()


@pytest.mark.asyncio
async def test_submitted_files_are_processed(pool_factory, build_orchestrator, audit_log):
    store = FakeObjectStore()
    for i in range(5):
        store.put("inbound", f"file_{i}.txt", f"content {i}".encode())
    pool = pool_factory(build_orchestrator(store, audit_log), workers=3)

    await pool.start_workers()
    for i in range(5):
        await pool.submit(f"file_{i}.txt")
    await asyncio.wait_for(pool.join(), timeout=10)

    info = pool.get_pool_info()
    assert info["total_submitted"] == 5
    assert info["total_completed"] == 5
    assert info["total_failed"] == 0
    assert sorted(store.keys("outbound")) == [f"file_{i}.txt" for i in range(5)]
    assert len(pool.get_recent_results()) == 5


@pytest.mark.asyncio
async def test_failed_files_are_counted(pool_factory, build_orchestrator, audit_log):
    store = FakeObjectStore()
    pool = pool_factory(build_orchestrator(store, audit_log), workers=1)

    await pool.start_workers()
    await pool.submit("missing.txt")
    await asyncio.wait_for(pool.join(), timeout=5)

    assert pool.get_pool_info()["total_failed"] == 1
    assert not pool.get_recent_results()[0].success


@pytest.mark.asyncio
async def test_audit_failure_is_escalated_and_workers_survive(pool_factory):
    orchestrator = AsyncMock(spec=LifecycleOrchestrator)
    orchestrator.process_file.side_effect = AuditLogError("database gone")
    event_bus = DomainEventBus()
    escalations = []

    async def on_unavailable(event):
        escalations.append(event)

    await event_bus.subscribe(AuditLogUnavailableEvent, on_unavailable)
    pool = pool_factory(orchestrator, event_bus=event_bus, workers=1)

    await pool.start_workers()
    await pool.submit("a.txt")
    await pool.submit("b.txt")
    await asyncio.wait_for(pool.join(), timeout=5)

    assert [e.file_name for e in escalations] == ["a.txt", "b.txt"]
    info = pool.get_pool_info()
    assert info["audit_failures"] == 2
    assert info["last_audit_failure_at"] is not None
    assert pool.is_running


@pytest.mark.asyncio
async def test_stop_workers_is_idempotent(pool_factory):
    pool = pool_factory(AsyncMock(spec=LifecycleOrchestrator), workers=2)

    await pool.start_workers()
    assert pool.is_running
    await pool.stop_workers()
    await pool.stop_workers()
    assert not pool.is_running
