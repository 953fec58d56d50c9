"""
Watchdog – periodically checks a client connection and logs in again if needed.

Comm never retries on its own; this is the caller-side reconnect loop.
The first reconnect attempt happens after one interval, not on start.
"""

import asyncio
import logging

from .client import RouterAPIClient

log = logging.getLogger("Watchdog")


class Watchdog:

    def __init__(self, client: RouterAPIClient, interval: float = 30):
        self.client = client
        self.interval = interval
        self.reconnects = 0
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info("Watchdog started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            if self.client.logged_in:
                continue
            log.info(f"Reconnecting to {self.client.host}:{self.client.port}")
            try:
                if await self.client.connect():
                    self.reconnects += 1
            except Exception as e:
                log.warning(f"Watchdog error: {e}")
