"""
services/session/keepalive.py
Periodic connectivity probe against the platform API.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config.settings import settings

logger = logging.getLogger(__name__)


class KeepAliveProbe:
    """
    Calls `probe` once on start, then every `interval` seconds on the
    running loop. Failures are logged and swallowed; the probe never
    touches session or booking state.
    """

    def __init__(self, probe: Callable[[], Awaitable[object]], interval: Optional[float] = None):
        self.probe = probe
        self.interval = interval if interval is not None else settings.KEEPALIVE_INTERVAL_SECONDS
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="keepalive-probe")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await self.ping_once()
            await asyncio.sleep(self.interval)

    async def ping_once(self) -> bool:
        try:
            await self.probe()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            logger.warning("Keep-alive probe failed (%d so far): %s", self.failures, exc)
            return False
        return True
