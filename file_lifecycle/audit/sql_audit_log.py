"""SQL-backed audit log.

Stores audit entries and their transitions in two tables through SQLAlchemy
Core. Any SQLAlchemy URL works; the default is a SQLite file.

Tables:
    audit_entries: one row per task (start record updated on completion)
    audit_transitions: one row per state transition, ordered by sequence
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from file_lifecycle.audit.audit_log import AuditLog
from file_lifecycle.core.exceptions import AuditLogError
from file_lifecycle.models import AuditEntry, AuditTransition, StorageLocation, TaskState

logger = logging.getLogger(__name__)

metadata = MetaData()

audit_entries = Table(
    "audit_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_name", String(1024), nullable=False),
    Column("size_bytes", BigInteger, nullable=False, default=0),
    Column("source_container", String(255), nullable=False),
    Column("package_label", String(255), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("state", String(32), nullable=False),
    Column("destination_container", String(255), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("error_message", Text, nullable=False, default=""),
    sqlite_autoincrement=True,
)

audit_transitions = Table(
    "audit_transitions",
    metadata,
    Column("task_id", Integer, ForeignKey("audit_entries.id"), primary_key=True),
    Column("sequence", Integer, primary_key=True),
    Column("state", String(32), nullable=False),
    Column("container", String(255), nullable=False),
    Column("object_key", String(1024), nullable=False),
    Column("size_bytes", BigInteger, nullable=False, default=0),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
    Column("error_message", Text, nullable=False, default=""),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_engine(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    if url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})

    # In-memory SQLite must share one connection across worker threads
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class SqlAuditLog(AuditLog):
    """Audit log persisted through SQLAlchemy.

    Blocking database calls run in a worker thread so the event loop keeps
    serving other tasks. Every database error is wrapped in AuditLogError.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine = _build_engine(database_url)
        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise AuditLogError(f"Could not initialise audit log schema: {e}") from e
        logger.info("SqlAuditLog initialized (%s)", make_url(database_url).render_as_string(hide_password=True))

    def dispose(self) -> None:
        self._engine.dispose()

    async def close(self) -> None:
        self.dispose()
        logger.info("SqlAuditLog closed")

    async def _run(self, operation, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(operation, *args)
        except SQLAlchemyError as e:
            logger.critical("Audit log database error: %s", e)
            raise AuditLogError(f"Audit log unavailable: {e}") from e

    async def start(
        self, name: str, size_bytes: int, source_container: str, package_label: str
    ) -> int:
        return await self._run(self._start, name, size_bytes, source_container, package_label)

    def _start(self, name: str, size_bytes: int, source_container: str, package_label: str) -> int:
        now = _utcnow()
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(audit_entries).values(
                    file_name=name,
                    size_bytes=size_bytes,
                    source_container=source_container,
                    package_label=package_label,
                    started_at=now,
                    state=TaskState.RECEIVED.value,
                    error_message="",
                )
            )
            task_id = result.inserted_primary_key[0]
            conn.execute(
                insert(audit_transitions).values(
                    task_id=task_id,
                    sequence=1,
                    state=TaskState.RECEIVED.value,
                    container=source_container,
                    object_key=name,
                    size_bytes=size_bytes,
                    recorded_at=now,
                    error_message="",
                )
            )
        return int(task_id)

    async def record_transition(
        self, task_id: int, state: TaskState, location: StorageLocation, size_bytes: int
    ) -> None:
        await self._run(self._record_transition, task_id, state, location, size_bytes)

    def _record_transition(
        self, task_id: int, state: TaskState, location: StorageLocation, size_bytes: int
    ) -> None:
        with self._engine.begin() as conn:
            self._require(conn, task_id)
            self._append(conn, task_id, state, location, size_bytes, "")
            conn.execute(
                update(audit_entries)
                .where(audit_entries.c.id == task_id)
                .values(state=state.value, size_bytes=size_bytes)
            )

    async def complete(
        self,
        task_id: int,
        state: TaskState,
        destination_container: str,
        error_message: str = "",
        location: Optional[StorageLocation] = None,
        size_bytes: Optional[int] = None,
    ) -> None:
        await self._run(
            self._complete, task_id, state, destination_container, error_message, location, size_bytes
        )

    def _complete(
        self,
        task_id: int,
        state: TaskState,
        destination_container: str,
        error_message: str,
        location: Optional[StorageLocation],
        size_bytes: Optional[int],
    ) -> None:
        with self._engine.begin() as conn:
            row = self._require(conn, task_id)
            if TaskState(row.state).is_terminal:
                raise AuditLogError(f"Task {task_id} already completed with state {row.state}")
            size = row.size_bytes if size_bytes is None else size_bytes
            if location is None:
                location = StorageLocation(container=destination_container, key=row.file_name)
            recorded_at = self._append(conn, task_id, state, location, size, error_message)
            conn.execute(
                update(audit_entries)
                .where(audit_entries.c.id == task_id)
                .values(
                    state=state.value,
                    size_bytes=size,
                    destination_container=destination_container,
                    completed_at=recorded_at,
                    error_message=error_message,
                )
            )

    async def get_entry(self, task_id: int) -> Optional[AuditEntry]:
        return await self._run(self._get_entry, task_id)

    def _get_entry(self, task_id: int) -> Optional[AuditEntry]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(audit_entries).where(audit_entries.c.id == task_id)
            ).first()
        return self._to_entry(row) if row is not None else None

    async def get_transitions(self, task_id: int) -> List[AuditTransition]:
        return await self._run(self._get_transitions, task_id)

    def _get_transitions(self, task_id: int) -> List[AuditTransition]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(audit_transitions)
                .where(audit_transitions.c.task_id == task_id)
                .order_by(audit_transitions.c.sequence)
            ).all()
        return [
            AuditTransition(
                task_id=row.task_id,
                sequence=row.sequence,
                state=TaskState(row.state),
                container=row.container,
                key=row.object_key,
                size_bytes=row.size_bytes,
                recorded_at=row.recorded_at,
                error_message=row.error_message or "",
            )
            for row in rows
        ]

    async def find_unfinished(self) -> List[AuditEntry]:
        return await self._run(self._find_unfinished)

    def _find_unfinished(self) -> List[AuditEntry]:
        terminal = [TaskState.COMPLETED.value, TaskState.FAILED.value]
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(audit_entries)
                .where(audit_entries.c.state.not_in(terminal))
                .order_by(audit_entries.c.id)
            ).all()
        return [self._to_entry(row) for row in rows]

    @staticmethod
    def _require(conn, task_id: int):
        row = conn.execute(
            select(audit_entries).where(audit_entries.c.id == task_id)
        ).first()
        if row is None:
            raise AuditLogError(f"No audit entry with id {task_id}")
        return row

    @staticmethod
    def _append(
        conn,
        task_id: int,
        state: TaskState,
        location: StorageLocation,
        size_bytes: int,
        error_message: str,
    ) -> datetime:
        sequence = conn.execute(
            select(func.coalesce(func.max(audit_transitions.c.sequence), 0)).where(
                audit_transitions.c.task_id == task_id
            )
        ).scalar_one()
        recorded_at = _utcnow()
        conn.execute(
            insert(audit_transitions).values(
                task_id=task_id,
                sequence=sequence + 1,
                state=state.value,
                container=location.container,
                object_key=location.key,
                size_bytes=size_bytes,
                recorded_at=recorded_at,
                error_message=error_message,
            )
        )
        return recorded_at

    @staticmethod
    def _to_entry(row) -> AuditEntry:
        return AuditEntry(
            id=row.id,
            file_name=row.file_name,
            size_bytes=row.size_bytes,
            source_container=row.source_container,
            package_label=row.package_label,
            started_at=row.started_at,
            state=TaskState(row.state),
            destination_container=row.destination_container,
            completed_at=row.completed_at,
            error_message=row.error_message or "",
        )
