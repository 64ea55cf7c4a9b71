from functools import lru_cache
from typing import Any, Dict

from .audit.audit_log import AuditLog, InMemoryAuditLog
from .audit.sql_audit_log import SqlAuditLog
from .config import Settings
from .core.events.event_bus import DomainEventBus
from .core.exceptions import ConfigurationError
from .core.lifecycle_state_machine import LifecycleStateMachine
from .core.retry_policy import RetryPolicy
from .services.inbound_watcher import InboundWatcher
from .services.lifecycle_stages import LifecycleStages
from .services.notification_service import NotificationService, build_notifier
from .services.orchestrator import LifecycleOrchestrator
from .services.reconciliation import ReconciliationService
from .services.worker_pool import LifecycleWorkerPool
from .storage.copy_verifier import CopyVerifier
from .storage.local_store import LocalObjectStore
from .storage.object_store import ObjectStore
from .transform.field_encryption import FieldEncryptionTransform
from .transform.transform_stage import PassthroughTransform, TransformStage

# Global singleton instances
_singletons: Dict[str, Any] = {}


@lru_cache
def get_settings() -> Settings:
    """Hent Settings singleton instance."""
    return Settings()


def get_event_bus() -> DomainEventBus:
    if "event_bus" not in _singletons:
        _singletons["event_bus"] = DomainEventBus()
    return _singletons["event_bus"]


def get_object_store() -> ObjectStore:
    if "object_store" not in _singletons:
        settings = get_settings()
        if settings.store_backend == "local":
            _singletons["object_store"] = LocalObjectStore(settings)
        elif settings.store_backend == "minio":
            from .storage.minio_store import MinioObjectStore

            _singletons["object_store"] = MinioObjectStore(settings)
        else:
            raise ConfigurationError(f"Unknown store backend: {settings.store_backend}")
    return _singletons["object_store"]


def get_audit_log() -> AuditLog:
    if "audit_log" not in _singletons:
        settings = get_settings()
        if settings.audit_backend == "sql":
            _singletons["audit_log"] = SqlAuditLog(settings.audit_database_url)
        elif settings.audit_backend == "memory":
            _singletons["audit_log"] = InMemoryAuditLog()
        else:
            raise ConfigurationError(f"Unknown audit backend: {settings.audit_backend}")
    return _singletons["audit_log"]


def get_transform_stage() -> TransformStage:
    if "transform_stage" not in _singletons:
        settings = get_settings()
        if settings.transform_mode == "passthrough":
            _singletons["transform_stage"] = PassthroughTransform()
        elif settings.transform_mode == "field_encryption":
            _singletons["transform_stage"] = FieldEncryptionTransform(
                fields=settings.encrypted_field_names,
                key=settings.encryption_key,
                delimiter=settings.csv_delimiter,
            )
        else:
            raise ConfigurationError(f"Unknown transform mode: {settings.transform_mode}")
    return _singletons["transform_stage"]


def get_retry_policy() -> RetryPolicy:
    if "retry_policy" not in _singletons:
        _singletons["retry_policy"] = RetryPolicy(get_settings())
    return _singletons["retry_policy"]


def get_copy_verifier() -> CopyVerifier:
    if "copy_verifier" not in _singletons:
        _singletons["copy_verifier"] = CopyVerifier(
            settings=get_settings(),
            object_store=get_object_store(),
            retry_policy=get_retry_policy(),
        )
    return _singletons["copy_verifier"]


def get_state_machine() -> LifecycleStateMachine:
    if "state_machine" not in _singletons:
        _singletons["state_machine"] = LifecycleStateMachine(
            audit_log=get_audit_log(), event_bus=get_event_bus()
        )
    return _singletons["state_machine"]


def get_lifecycle_stages() -> LifecycleStages:
    if "lifecycle_stages" not in _singletons:
        _singletons["lifecycle_stages"] = LifecycleStages(
            settings=get_settings(),
            object_store=get_object_store(),
            transform_stage=get_transform_stage(),
            copy_verifier=get_copy_verifier(),
            retry_policy=get_retry_policy(),
        )
    return _singletons["lifecycle_stages"]


def get_orchestrator() -> LifecycleOrchestrator:
    if "orchestrator" not in _singletons:
        _singletons["orchestrator"] = LifecycleOrchestrator(
            settings=get_settings(),
            object_store=get_object_store(),
            state_machine=get_state_machine(),
            stages=get_lifecycle_stages(),
            retry_policy=get_retry_policy(),
        )
    return _singletons["orchestrator"]


def get_worker_pool() -> LifecycleWorkerPool:
    if "worker_pool" not in _singletons:
        _singletons["worker_pool"] = LifecycleWorkerPool(
            settings=get_settings(),
            orchestrator=get_orchestrator(),
            event_bus=get_event_bus(),
        )
    return _singletons["worker_pool"]


def get_inbound_watcher() -> InboundWatcher:
    if "inbound_watcher" not in _singletons:
        _singletons["inbound_watcher"] = InboundWatcher(
            settings=get_settings(),
            object_store=get_object_store(),
            submit=get_worker_pool().submit,
        )
    return _singletons["inbound_watcher"]


def get_notification_service() -> NotificationService:
    if "notification_service" not in _singletons:
        _singletons["notification_service"] = NotificationService(
            event_bus=get_event_bus(), notifier=build_notifier(get_settings())
        )
    return _singletons["notification_service"]


def get_reconciliation_service() -> ReconciliationService:
    if "reconciliation_service" not in _singletons:
        _singletons["reconciliation_service"] = ReconciliationService(
            settings=get_settings(),
            audit_log=get_audit_log(),
            object_store=get_object_store(),
        )
    return _singletons["reconciliation_service"]


def reset_singletons() -> None:
    _singletons.clear()
    get_settings.cache_clear()
