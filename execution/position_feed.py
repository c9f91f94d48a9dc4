"""
Position change feed
Polls a wallet's positions and fires a callback whenever the row set changes
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional

from loguru import logger

from execution.models import Position
from storage.base import StoreError


class PositionFeed:
    """
    Re-fetches positions every ``interval`` seconds.

    The first poll only records a baseline; later polls call ``callback`` with
    the full, newest-first row set when anything differs from the last one.
    Store and callback errors are logged and the loop keeps polling.
    """

    def __init__(self, name: str, fetch: Callable[[], Awaitable[List[Position]]],
                 callback: Callable[[List[Position]], Any], interval: float = 5.0):
        self.name = name
        self.fetch = fetch
        self.callback = callback
        self.interval = interval
        self.last_error: Optional[str] = None
        self._last: Optional[List[Position]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        logger.info(f"{self.name}: polling every {self.interval}s")
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"{self.name}: stopped")

    async def poll_once(self) -> bool:
        """One fetch; True when the callback fired."""
        rows = await self.fetch()
        if self._last is None:
            self._last = rows
            return False
        if rows == self._last:
            return False
        self._last = rows
        result = self.callback(rows)
        if inspect.isawaitable(result):
            await result
        return True

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except StoreError as e:
                self.last_error = str(e)
                logger.error(f"{self.name}: poll failed: {e}")
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"{self.name}: error in poll loop: {e}")
            await asyncio.sleep(self.interval)
