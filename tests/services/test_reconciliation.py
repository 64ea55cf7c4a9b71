import pytest

from file_lifecycle.models import TaskState
from file_lifecycle.services.reconciliation import ReconciliationService
from tests.fakes import FakeObjectStore, loc


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def service(settings, audit_log, store):
    return ReconciliationService(settings=settings, audit_log=audit_log, object_store=store)


async def start_task(audit_log, name, *states):
    task_id = await audit_log.start(name, 3, "inbound", "pkg")
    location = loc("inbound", name)
    for state in states:
        if state != TaskState.MOVING:
            location = loc("processing", name)
        await audit_log.record_transition(task_id, state, location, 3)
    return task_id


@pytest.mark.asyncio
async def test_finished_tasks_are_not_orphans(service, audit_log):
    task_id = await start_task(audit_log, "done.txt")
    await audit_log.complete(task_id, TaskState.COMPLETED, "outbound")

    assert await service.find_orphans() == []


@pytest.mark.asyncio
async def test_orphan_reports_last_state_and_locations(service, audit_log, store):
    task_id = await start_task(audit_log, "stuck.txt", TaskState.MOVING)
    store.put("inbound", "stuck.txt", b"abc")
    store.put("processing", "stuck.txt", b"abc")

    orphans = await service.find_orphans()

    assert len(orphans) == 1
    report = orphans[0].to_dict()
    assert report["id"] == task_id
    assert report["lastState"] == "Moving"
    assert report["presentIn"] == ["inbound", "processing"]
    assert report["archiveKeys"] == []


@pytest.mark.asyncio
async def test_finalizing_orphan_lists_partial_copies(service, audit_log, store):
    await start_task(
        audit_log, "report.csv", TaskState.MOVING, TaskState.TRANSFORMING, TaskState.FINALIZING
    )
    store.put("processing", "report.csv", b"abc")
    store.put("outbound", "report.csv", b"abc")
    store.put("archive", "20240101_120000_report.csv", b"abc")
    store.put("archive", "20240101_120000_other.csv", b"xyz")

    [orphan] = await service.find_orphans()

    assert orphan.last_state == TaskState.FINALIZING
    assert orphan.present_in == ["processing", "outbound", "archive"]
    assert orphan.archive_keys == ["20240101_120000_report.csv"]


@pytest.mark.asyncio
async def test_active_tasks_are_excluded(service, audit_log):
    task_id = await start_task(audit_log, "busy.txt", TaskState.MOVING)

    assert await service.find_orphans(exclude_ids={task_id}) == []


@pytest.mark.asyncio
async def test_reconcile_reports_without_changing_state(service, audit_log):
    task_id = await start_task(audit_log, "stuck.txt", TaskState.MOVING)

    orphans = await service.reconcile(mark_abandoned=False)

    assert len(orphans) == 1
    assert (await audit_log.get_entry(task_id)).state == TaskState.MOVING


@pytest.mark.asyncio
async def test_reconcile_can_mark_orphans_failed(service, audit_log, store):
    task_id = await start_task(audit_log, "stuck.txt", TaskState.MOVING, TaskState.TRANSFORMING)
    store.put("processing", "stuck.txt", b"abc")

    await service.reconcile(mark_abandoned=True)

    entry = await audit_log.get_entry(task_id)
    assert entry.state == TaskState.FAILED
    assert entry.destination_container == "processing"
    assert entry.error_message.startswith("Abandoned during Transforming")
    assert "processing" in entry.error_message
    # Objekter flyttes aldrig af reconciliation
    assert store.get("processing", "stuck.txt") == b"abc"
    assert await service.find_orphans() == []
