from .transform_stage import (
    PassthroughTransform,
    RecordStatus,
    TransformResult,
    TransformStage,
    enforce_record_policy,
)
from .field_encryption import FieldEncryptionTransform

__all__ = [
    "PassthroughTransform",
    "RecordStatus",
    "TransformResult",
    "TransformStage",
    "enforce_record_policy",
    "FieldEncryptionTransform",
]
