"""
Pytest configuration and shared fixtures for file_lifecycle tests.
"""

from datetime import datetime, timezone

import pytest

from file_lifecycle.audit.audit_log import InMemoryAuditLog
from file_lifecycle.config import Settings
from file_lifecycle.core.events.event_bus import DomainEventBus
from file_lifecycle.core.lifecycle_state_machine import LifecycleStateMachine
from file_lifecycle.core.retry_policy import RetryPolicy
from file_lifecycle.dependencies import reset_singletons
from file_lifecycle.services.lifecycle_stages import LifecycleStages
from file_lifecycle.services.orchestrator import LifecycleOrchestrator
from file_lifecycle.storage.copy_verifier import CopyVerifier
from file_lifecycle.transform.transform_stage import PassthroughTransform
from tests.fakes import FakeObjectStore

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_singletons():
    """Ingen delt state mellem tests."""
    reset_singletons()
    yield
    reset_singletons()


@pytest.fixture
def settings(tmp_path):
    """Settings with short timeouts so copy waits finish in milliseconds."""
    return Settings(
        _env_file=None,
        store_root_directory=str(tmp_path / "containers"),
        audit_backend="memory",
        copy_poll_interval_seconds=0.01,
        copy_base_wait_seconds=0.2,
        copy_wait_seconds_per_mb=0.0,
        copy_max_wait_seconds=0.2,
        max_retry_attempts=3,
        retry_delay_seconds=0.0,
        log_file_path=str(tmp_path / "logs" / "test.log"),
    )


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def audit_log():
    return InMemoryAuditLog()


@pytest.fixture
def event_bus():
    return DomainEventBus()


@pytest.fixture
def build_orchestrator(settings, event_bus):
    """Factory that wires an orchestrator around the given collaborators."""

    def _build(object_store, audit_log, transform_stage=None, clock=lambda: FIXED_NOW, **overrides):
        effective = settings.model_copy(update=overrides) if overrides else settings
        retry_policy = RetryPolicy(effective)
        verifier = CopyVerifier(effective, object_store, retry_policy)
        stages = LifecycleStages(
            settings=effective,
            object_store=object_store,
            transform_stage=transform_stage or PassthroughTransform(),
            copy_verifier=verifier,
            retry_policy=retry_policy,
            clock=clock,
        )
        state_machine = LifecycleStateMachine(audit_log=audit_log, event_bus=event_bus)
        return LifecycleOrchestrator(
            settings=effective,
            object_store=object_store,
            state_machine=state_machine,
            stages=stages,
            retry_policy=retry_policy,
        )

    return _build
