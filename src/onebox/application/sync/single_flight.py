"""At most one run in flight, with coalesced follow-up requests."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger


class SingleFlight:
    """
    Runs ``job`` so that runs never overlap.

    A trigger that arrives while a run is in flight only sets a dirty flag;
    however many such triggers arrive, exactly one more run follows.
    """

    def __init__(self, job: Callable[[], Awaitable[None]], name: str = "job"):
        self._job = job
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._dirty = False
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def trigger(self) -> bool:
        """Start a run now (True) or mark one pending behind the current run (False)."""
        if self._closed:
            return False
        if self.running:
            self._dirty = True
            return False
        self._idle.clear()
        self._task = asyncio.get_running_loop().create_task(self._drain(), name=f"single-flight:{self._name}")
        return True

    async def _drain(self) -> None:
        try:
            while True:
                self._dirty = False
                self.runs += 1
                try:
                    await self._job()
                except Exception:
                    logger.exception(f"{self._name}: run failed")
                if not self._dirty or self._closed:
                    break
        finally:
            self._dirty = False
            self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def close(self) -> None:
        """Refuse new runs; a run already in flight is allowed to finish."""
        self._closed = True

    async def cancel(self) -> None:
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
