"""
Inbound Watcher - polls the inbound container and submits new objects.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from file_lifecycle.config import Settings
from file_lifecycle.storage.object_store import ObjectStore


class InboundWatcher:
    """
    Trigger source for deployments without push notifications.

    A key is submitted the first scan it is seen. It is forgotten once it
    disappears from inbound, so a later upload with the same name is
    submitted again.
    """

    def __init__(
        self,
        settings: Settings,
        object_store: ObjectStore,
        submit: Callable[[str], Awaitable[None]],
    ):
        self.settings = settings
        self.object_store = object_store
        self._submit = submit
        self._seen: Set[str] = set()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def scan_once(self) -> int:
        """Run a single scan and return the number of submitted keys."""
        keys = set(await self.object_store.list_keys(self.settings.inbound_container))
        new_keys = sorted(keys - self._seen)
        self._seen = keys

        for key in new_keys:
            await self._submit(key)

        if new_keys:
            logging.info(f"Inbound scan submitted {len(new_keys)} new file(s)")
        return len(new_keys)

    async def start_scanning(self) -> None:
        if self._running:
            logging.warning("Inbound watcher already running")
            return

        self._running = True
        logging.info(
            f"Inbound watcher started for '{self.settings.inbound_container}' "
            f"every {self.settings.inbound_poll_interval_seconds}s"
        )
        try:
            while self._running:
                try:
                    await self.scan_once()
                except Exception as e:
                    logging.error(f"Inbound scan failed: {e}")
                await asyncio.sleep(self.settings.inbound_poll_interval_seconds)
        except asyncio.CancelledError:
            logging.info("Inbound watcher cancelled")
            raise
        finally:
            self._running = False

    async def stop_scanning(self) -> None:
        self._running = False
        logging.info("Inbound watcher stop request")
