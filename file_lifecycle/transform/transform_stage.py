"""
Transform Stage interface consumed by the orchestrator.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from file_lifecycle.core.exceptions import TransformError


@dataclass(frozen=True)
class RecordStatus:
    """Outcome of transforming one record (row) of a file."""

    index: int
    ok: bool
    message: str = ""


@dataclass
class TransformResult:
    content: bytes
    records: List[RecordStatus] = field(default_factory=list)

    @property
    def failed_records(self) -> List[RecordStatus]:
        return [record for record in self.records if not record.ok]

    @property
    def has_failures(self) -> bool:
        return any(not record.ok for record in self.records)

    def failure_summary(self, limit: int = 3) -> str:
        failed = self.failed_records
        details = "; ".join(f"record {r.index}: {r.message}" for r in failed[:limit])
        more = f" (+{len(failed) - limit} more)" if len(failed) > limit else ""
        return f"{len(failed)} of {len(self.records)} record(s) failed: {details}{more}"


class TransformStage(ABC):
    """
    Transforms a file's content record by record.

    Record-level failures are reported in the result with the record passed
    through unchanged. Whole-file failures raise TransformError.
    """

    name = "transform"

    @abstractmethod
    async def transform(self, content: bytes) -> TransformResult:
        ...

    def get_transform_info(self) -> dict:
        return {"name": self.name}


class PassthroughTransform(TransformStage):
    """Leaves content untouched; every line is reported as a successful record."""

    name = "passthrough"

    async def transform(self, content: bytes) -> TransformResult:
        lines = content.splitlines()
        return TransformResult(
            content=content,
            records=[RecordStatus(index=i, ok=True) for i in range(len(lines))],
        )


def enforce_record_policy(result: TransformResult, strict: bool) -> TransformResult:
    """Apply the strict-mode policy: any failed record fails the whole file."""
    if strict and result.has_failures:
        raise TransformError(f"Strict transform rejected file: {result.failure_summary()}")
    return result
