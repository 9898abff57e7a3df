import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Coalesce bursts of triggers into a single call of an async action.

    Every ``trigger()`` restarts the timer; the action runs once, ``delay``
    seconds after the last trigger. Must be triggered from the event loop thread.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[object]]):
        self.delay = delay
        self._action = action
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def wait(self) -> None:
        """Wait until no timer is armed and no action it started is still running."""
        while True:
            if self._handle is not None:
                await asyncio.sleep(self.delay / 4 or 0.01)
            elif self._task is not None and not self._task.done():
                await asyncio.gather(self._task, return_exceptions=True)
            else:
                return

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._action())
        self._task.add_done_callback(log_task_failure)


def log_task_failure(task: asyncio.Task) -> None:
    """Done-callback that retrieves and logs the exception of a background task."""
    if not task.cancelled() and task.exception() is not None:
        logger.error("Background task %s failed: %s", task.get_name(), task.exception())
