"""
Copy Verifier - issues a copy, waits for it and confirms the destination.

A source may only be deleted after ``copy_and_verify`` has returned.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import (
    CopyFailedError,
    CopyInterruptedError,
    CopyTimeoutError,
    VerificationError,
)
from file_lifecycle.core.retry_policy import RetryPolicy
from file_lifecycle.models import CopyStatus, StorageLocation
from file_lifecycle.storage.object_store import CopyHandle, ObjectStore


class CopyVerifier:
    """
    Runs the copy-verification protocol against an ObjectStore.

    1. Issue the copy (transient errors retried by the RetryPolicy).
    2. Poll the copy status every ``copy_poll_interval_seconds`` until it is
       final, bounded by ``Settings.copy_timeout_for(size)``. A copy that
       breaks off on a transient error is issued again under the RetryPolicy.
    3. On Success, fetch the destination size and compare it to the expected size.
    """

    def __init__(
        self,
        settings: Settings,
        object_store: ObjectStore,
        retry_policy: RetryPolicy,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.object_store = object_store
        self.retry_policy = retry_policy
        self.poll_interval = settings.copy_poll_interval_seconds
        self._sleep = sleep or asyncio.sleep
        self._clock = clock

    async def copy_and_verify(
        self,
        source: StorageLocation,
        destination: StorageLocation,
        expected_size: int,
        metadata: Optional[Dict[str, str]] = None,
    ) -> int:
        """
        Copy ``source`` to ``destination`` and return the verified destination size.

        Raises:
            CopyTimeoutError: The copy stayed Pending past its maximum wait.
            CopyFailedError: The store reported Failed or Aborted.
            VerificationError: The destination size differs from ``expected_size``.
            CopyInterruptedError: Every attempt at the copy broke off.
            TransientStoreError: Retries were exhausted.
            ObjectNotFoundError: The source does not exist.
        """
        timeout = self.settings.copy_timeout_for(expected_size)
        await self.retry_policy.run(
            lambda: self._copy_once(source, destination, metadata, timeout),
            f"copy {source} -> {destination}",
            retry_on=(CopyInterruptedError,),
        )

        actual_size = await self.retry_policy.run(
            lambda: self.object_store.fetch_size(destination),
            f"size check of {destination}",
        )
        if actual_size != expected_size:
            raise VerificationError(
                f"Copy {source} -> {destination} reported success but destination has "
                f"{actual_size} bytes, expected {expected_size}"
            )

        logging.debug(f"Verified copy {source} -> {destination} ({actual_size:,} bytes)")
        return actual_size

    async def _copy_once(
        self,
        source: StorageLocation,
        destination: StorageLocation,
        metadata: Optional[Dict[str, str]],
        timeout: float,
    ) -> None:
        handle = await self.retry_policy.run(
            lambda: self.object_store.copy(source, destination, metadata),
            f"copy {source} -> {destination}",
        )
        status = await self.wait_for_copy(handle, timeout)
        if status != CopyStatus.SUCCESS:
            raise CopyFailedError(
                f"Copy {source} -> {destination} ended with status {status.value}"
            )

    async def wait_for_copy(self, handle: CopyHandle, timeout: float) -> CopyStatus:
        """
        Poll until the copy reaches a final status or ``timeout`` seconds have passed.

        Raises CopyInterruptedError when the copy broke off; the handle is
        finished and the copy has to be issued again.
        """
        deadline = self._clock() + timeout
        while True:
            status = await self.retry_policy.run(
                lambda: self.object_store.poll_copy_status(handle),
                f"status poll of {handle}",
            )
            if status.is_final:
                return status

            if self._clock() >= deadline:
                try:
                    await self.object_store.abort_copy(handle)
                except Exception as e:
                    logging.warning(f"Could not abort {handle} after timeout: {e}")
                raise CopyTimeoutError(
                    f"Timeout: copy {handle.source} -> {handle.destination} "
                    f"did not complete within {timeout:.1f}s"
                )

            await self._sleep(self.poll_interval)
