"""
Cancellable trailing-edge debounce for async callbacks.

``schedule()`` (re)arms a timer on the running loop; only the last call
within ``delay`` seconds fires. ``cancel()`` disarms a pending timer but
leaves an already-running callback alone: its result may be stale, but its
writes are idempotent upserts.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class DebouncedCall:
    """Owns one timer handle and the tasks it has launched."""

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        delay: float,
        *,
        name: str = "debounced",
    ) -> None:
        self._callback = callback
        self.delay = delay
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._inflight: set[asyncio.Task[None]] = set()
        self.fire_count = 0

    @property
    def pending(self) -> bool:
        """True while a timer is armed and has not fired yet."""
        return self._handle is not None

    def schedule(self) -> None:
        """Arm (or re-arm) the timer. Must be called from inside a running loop."""
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug(f"⏹️ {self.name}: pending call cancelled")

    def _fire(self) -> None:
        self._handle = None
        self.fire_count += 1
        task = asyncio.get_running_loop().create_task(self._run(), name=f"{self.name}-{self.fire_count}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"❌ {self.name} failed: {e}", exc_info=True)

    async def wait(self) -> None:
        """Wait for callbacks that have already fired to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
