# file_lifecycle/core/exceptions.py


class InvalidTransitionError(Exception):
    """Raised when a task state transition is not allowed."""
    def __init__(self, task_id: int, from_state: str, to_state: str):
        self.task_id = task_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition for task {task_id}: "
            f"Cannot move from '{from_state}' to '{to_state}'."
        )


class LifecycleError(Exception):
    """Base class for errors raised while driving a file through its lifecycle."""


class TransientStoreError(LifecycleError):
    """Temporary store unavailability (network blip, throttling, expired credentials)."""


class ObjectNotFoundError(LifecycleError):
    """The addressed object does not exist in its container."""

    def __init__(self, location):
        self.location = location
        super().__init__(f"Object not found: {location}")


class CopyInterruptedError(LifecycleError):
    """A copy broke off on a transient store error; issuing it again may succeed."""


class CopyFailedError(LifecycleError):
    """The store reported the copy as failed or aborted."""


class CopyTimeoutError(CopyFailedError):
    """A copy did not leave the pending state within its maximum wait."""


class VerificationError(CopyFailedError):
    """A copy reported success but the destination is inconsistent with the source."""


class TransformError(LifecycleError):
    """The transform stage failed for the whole file."""


class ConfigurationError(LifecycleError):
    """A collaborator was configured with unusable values."""


class AuditLogError(LifecycleError):
    """
    The audit log could not be written or read.

    Processing cannot continue without a durable trail, so this is the only
    error the orchestrator lets escape.
    """


class SourceCleanupError(LifecycleError):
    """A copy verified but its source could not be deleted afterwards."""

    def __init__(self, source, verified_copy, cause: Exception):
        self.source = source
        self.verified_copy = verified_copy
        super().__init__(
            f"copy to {verified_copy} verified but {source} could not be deleted: {cause}"
        )
