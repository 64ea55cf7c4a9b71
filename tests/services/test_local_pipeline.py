"""
Full pipeline over a real directory tree with field encryption enabled.
"""

import errno
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from file_lifecycle.models import TaskState
from file_lifecycle.storage.local_store import LocalObjectStore
from file_lifecycle.transform.field_encryption import FieldEncryptionTransform
from tests.fakes import loc

REPORT = b"customer,ssn,amount\nAda,123-45-6789,10\nBob,987-65-4321,20\n"


@pytest.fixture
def local_store(settings):
    store = LocalObjectStore(settings)
    inbound = store.root / settings.inbound_container
    inbound.mkdir(parents=True)
    (inbound / "report.csv").write_bytes(REPORT)
    yield store


@pytest.mark.asyncio
async def test_report_is_encrypted_delivered_and_archived(build_orchestrator, audit_log, local_store):
    transform = FieldEncryptionTransform(fields=["ssn"], key=Fernet.generate_key().decode("ascii"))
    orchestrator = build_orchestrator(local_store, audit_log, transform_stage=transform)

    result = await orchestrator.process_file("report.csv")

    assert result.success, result.error_message
    task = result.task
    assert task.archive_key == "20240101_120000_report.csv"

    delivered = await local_store.read(loc("outbound", "report.csv"))
    archived = await local_store.read(loc("archive", task.archive_key))
    assert delivered == archived
    assert b"123-45-6789" not in delivered
    assert task.size_bytes == len(delivered)

    rows = delivered.decode("utf-8").splitlines()
    assert rows[0] == "customer,ssn,amount"
    assert transform.decrypt_value(rows[1].split(",")[1]) == "123-45-6789"

    assert not await local_store.exists(loc("inbound", "report.csv"))
    assert not await local_store.exists(loc("processing", "report.csv"))
    assert (await audit_log.get_entry(task.id)).state == TaskState.COMPLETED
    # Afsluttede kopier holdes ikke i hukommelsen
    assert local_store.get_store_info()["copies_tracked"] == 0

    await local_store.close()


@pytest.mark.asyncio
async def test_strict_failure_lands_in_error_with_metadata(build_orchestrator, audit_log, local_store):
    (local_store.root / "inbound" / "bad.csv").write_bytes(b"customer,ssn\nonly-one-field\n")
    transform = FieldEncryptionTransform(fields=["ssn"], key=Fernet.generate_key().decode("ascii"))
    orchestrator = build_orchestrator(
        local_store, audit_log, transform_stage=transform, strict_transform=True
    )

    result = await orchestrator.process_file("bad.csv")

    assert result.task.state == TaskState.FAILED
    assert await local_store.read(loc("error", "bad.csv")) == b"customer,ssn\nonly-one-field\n"
    metadata = await local_store.get_metadata(loc("error", "bad.csv"))
    assert metadata["failed-state"] == "Transforming"
    assert metadata["error-message"].startswith("Transforming failed: Strict transform rejected file")
    assert not await local_store.exists(loc("processing", "bad.csv"))

    await local_store.close()


@pytest.mark.asyncio
async def test_move_survives_one_io_error(build_orchestrator, audit_log, local_store):
    orchestrator = build_orchestrator(local_store, audit_log)
    original = local_store._perform_copy
    calls = []

    async def fails_first_copy(handle, metadata):
        calls.append(handle)
        if len(calls) == 1:
            raise OSError(errno.EIO, "Input/output error")
        return await original(handle, metadata)

    with patch.object(local_store, "_perform_copy", side_effect=fails_first_copy):
        result = await orchestrator.process_file("report.csv")

    assert result.success, result.error_message
    assert await local_store.read(loc("outbound", "report.csv")) == REPORT
    assert not await local_store.exists(loc("inbound", "report.csv"))
    # Én afbrudt og én gentaget kopi til processing, derefter outbound og archive
    assert len(calls) == 4
    assert local_store.get_store_info()["copies_tracked"] == 0

    await local_store.close()


@pytest.mark.asyncio
async def test_multi_line_field_is_encrypted_end_to_end(build_orchestrator, audit_log, local_store):
    (local_store.root / "inbound" / "notes.csv").write_bytes(
        b'name,ssn,note\nAda,123-45-6789,"line one\nline two"\n'
    )
    transform = FieldEncryptionTransform(fields=["ssn"], key=Fernet.generate_key().decode("ascii"))
    orchestrator = build_orchestrator(local_store, audit_log, transform_stage=transform)

    result = await orchestrator.process_file("notes.csv")

    assert result.success, result.error_message
    assert result.records_total == 1
    assert result.records_failed == 0
    delivered = await local_store.read(loc("outbound", "notes.csv"))
    assert b"123-45-6789" not in delivered
    assert b'"line one\nline two"' in delivered

    await local_store.close()
