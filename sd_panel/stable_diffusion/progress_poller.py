"""
Progress polling while a generation request is outstanding
"""

import asyncio
import logging
import math
from typing import Callable, Optional

from .sd_client import SDClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class ProgressPoller:
    """Owns a single polling task; start() always replaces the previous one"""

    def __init__(self, sd_client: SDClient, on_progress: Callable[[float], None], interval: float = DEFAULT_POLL_INTERVAL):
        self.sd_client = sd_client
        self.on_progress = on_progress
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.stop()
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.poll_once()

    async def poll_once(self) -> None:
        progress = await self.sd_client.fetch_progress()
        if progress is None:
            return
        value = progress.progress
        if isinstance(value, (int, float)) and math.isfinite(value):
            self.on_progress(float(value))

    async def __aenter__(self) -> "ProgressPoller":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()
