from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Object store
    store_backend: str = "local"  # "local" or "minio"
    store_root_directory: str = "data/containers"
    minio_endpoint: str = ""
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_secure: bool = True

    # Containers
    inbound_container: str = "inbound"
    processing_container: str = "processing"
    outbound_container: str = "outbound"
    archive_container: str = "archive"
    error_container: str = "error"
    package_label: str = "file-lifecycle"

    # Copy verifikation
    copy_poll_interval_seconds: float = 1.0
    copy_base_wait_seconds: float = 30.0  # Minimum wait regardless of size
    copy_wait_seconds_per_mb: float = 2.0  # Size-proportional allowance
    copy_max_wait_seconds: float = 900.0  # Hard upper bound for one copy
    chunk_size_kb: int = 2048  # Chunk size for local store copies

    # Retry af transient fejl
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    retry_backoff_factor: float = 2.0

    # Transform stage
    transform_mode: str = "passthrough"  # "passthrough" or "field_encryption"
    encrypted_fields: str = ""  # Comma separated CSV column names
    encryption_key: str = ""  # Fernet key (urlsafe base64, 32 bytes)
    strict_transform: bool = False
    csv_delimiter: str = ","

    # Audit log
    audit_backend: str = "sql"  # "sql" or "memory"
    audit_database_url: str = "sqlite:///data/audit_log.db"

    # Parallel processing
    max_concurrent_tasks: int = 4

    # Inbound watcher (trigger source)
    enable_inbound_watcher: bool = False
    inbound_poll_interval_seconds: float = 10.0

    # Notifications
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 10.0

    # Reconciliation
    reconcile_on_startup: bool = True
    reconcile_mark_abandoned: bool = False

    # Logging konfiguration
    log_level: str = "INFO"
    log_file_path: str = "logs/file_lifecycle.log"
    log_retention_days: int = 30

    model_config = SettingsConfigDict(env_file="settings.env", extra="ignore")

    @property
    def log_directory(self) -> Path:
        """Returnerer log directory som Path objekt"""
        return Path(self.log_file_path).parent

    @property
    def encrypted_field_names(self) -> List[str]:
        return [name.strip() for name in self.encrypted_fields.split(",") if name.strip()]

    def copy_timeout_for(self, size_bytes: int) -> float:
        """Maximum time to wait for one copy of an object of the given size."""
        size_mb = max(size_bytes, 0) / (1024 * 1024)
        proportional = self.copy_base_wait_seconds + size_mb * self.copy_wait_seconds_per_mb
        return min(self.copy_max_wait_seconds, proportional)
