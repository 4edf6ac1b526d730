"""
Connectivity Monitor.
Turns a noisy reachability signal into settled online/offline transitions.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ..core.config import settings

logger = logging.getLogger(__name__)


class ConnectivityMode(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


TransitionHandler = Callable[[ConnectivityMode, ConnectivityMode], Awaitable[None]]


class ConnectivityMonitor:
    """
    Holds the process-wide connectivity mode.

    Raw signals go through ``report()``. A transition is emitted only once the
    signal has been quiet for the debounce window and differs from the current
    mode, so offline -> online -> offline inside one window emits nothing.
    """

    def __init__(
        self,
        initial_mode: ConnectivityMode = ConnectivityMode.OFFLINE,
        debounce_seconds: Optional[float] = None,
    ):
        self._mode = initial_mode
        self._observed = initial_mode
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.CONNECTIVITY_DEBOUNCE_SECONDS
        )
        self._subscribers: List[TransitionHandler] = []
        self._settle_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None

    @property
    def current_mode(self) -> ConnectivityMode:
        return self._mode

    @property
    def is_online(self) -> bool:
        return self._mode is ConnectivityMode.ONLINE

    def subscribe(self, handler: TransitionHandler) -> Callable[[], None]:
        """Register a transition handler; returns an unsubscribe callable."""
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def report(self, online: bool) -> None:
        """Feed one raw reachability signal. Must be called from the event loop."""
        self._observed = ConnectivityMode.ONLINE if online else ConnectivityMode.OFFLINE
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = asyncio.get_running_loop().create_task(self._settle())

    async def _settle(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Past this point the window is closed; a new report starts a new window
        # instead of cancelling handlers that are already running.
        self._settle_task = None
        self._dispatch_task = asyncio.current_task()
        await self._apply(self._observed)

    async def recompute(self, check_reachable: Callable[[], Awaitable[bool]]) -> ConnectivityMode:
        """Set the startup mode from an active reachability check. Startup is not a transition."""
        online = await check_reachable()
        self._mode = self._observed = ConnectivityMode.ONLINE if online else ConnectivityMode.OFFLINE
        logger.info("Connectivity at startup: %s", self._mode.value)
        return self._mode

    async def _apply(self, observed: ConnectivityMode) -> None:
        if observed is self._mode:
            logger.debug("Connectivity signal coalesced, still %s", observed.value)
            return
        previous, self._mode = self._mode, observed
        logger.info("Connectivity transition: %s -> %s", previous.value, observed.value)
        for handler in list(self._subscribers):
            try:
                await handler(previous, observed)
            except Exception:
                logger.exception("Connectivity handler %r failed", handler)

    async def wait_settled(self) -> None:
        """Wait until pending signals have settled and their handlers finished."""
        while True:
            task = self._settle_task or self._dispatch_task
            if task is None or task.done():
                return
            await asyncio.wait({task})

    def close(self) -> None:
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = None
