"""Progress clock and time helpers for the player."""

import asyncio
import inspect
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

TickCallback = Callable[[], Union[None, Awaitable[None]]]


class ProgressClock:
    """Calls ``on_tick`` every ``interval`` seconds while running.

    ``stop()`` may be called from inside ``on_tick``; the loop then exits
    after the current tick instead of cancelling itself mid-callback.
    """

    def __init__(self, interval: float, on_tick: TickCallback):
        self.interval = interval
        self.on_tick = on_tick
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking, restarting the interval if already running."""
        self.stop()
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            try:
                result = self.on_tick()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Progress tick failed")


def format_time(seconds: Optional[float]) -> str:
    """Format seconds as M:SS."""
    if not seconds or seconds < 0:
        return "0:00"
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


def calculate_progress(current_time: float, duration: float) -> float:
    """Progress percentage in [0, 100]."""
    if duration <= 0:
        return 0.0
    return max(0.0, min(100.0, current_time / duration * 100))


def progress_to_time(percentage: float, duration: float) -> float:
    """Position in seconds for a progress percentage (clamped to [0, 100])."""
    percentage = max(0.0, min(100.0, percentage))
    return duration * percentage / 100
