"""
Connectivity signal: online/offline flag with change notifications.
Fed either manually (``set_online``) or by a periodic backend health probe.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:

    def __init__(
        self,
        online: bool = True,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
        interval: float = 15.0,
    ):
        self._online = online
        self._probe = probe
        self.interval = interval
        self._listeners: List[ConnectivityListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Update the flag; listeners only hear about transitions."""
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> None:
        """Start the background probe loop, if a probe and a positive interval are set."""
        if self._probe is None or self.interval <= 0 or self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def check(self) -> bool:
        """Probe once and apply the result."""
        online = await self._probe()
        self.set_online(online)
        return online

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)
