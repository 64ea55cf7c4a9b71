"""
Object store clients.

- ObjectStore / CopyHandle: interface consumed by the orchestrator
- LocalObjectStore: directory-backed containers (aiofiles)
- MinioObjectStore: S3-compatible buckets (minio)
- CopyVerifier: copy -> poll -> verify protocol shared by all stages
"""

from .object_store import CopyHandle, ObjectStore
from .local_store import LocalObjectStore
from .copy_verifier import CopyVerifier

__all__ = ["CopyHandle", "ObjectStore", "LocalObjectStore", "CopyVerifier"]
