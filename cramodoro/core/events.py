"""Network reachability state and change notifications.

Components that care about connectivity (the sync queue's auto-sync loop)
register a listener instead of polling the network themselves. The monitor
only notifies on a change of state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkState:
    is_connected: bool
    is_internet_reachable: Optional[bool] = None

    @property
    def is_online(self) -> bool:
        return self.is_connected and bool(self.is_internet_reachable)


Listener = Callable[[NetworkState], Any]


class ReachabilityMonitor:
    """
    Holds the last known network state.

    With ``targets`` set, ``refresh()`` opens a TCP connection to each
    ``(host, port)`` in turn with a short timeout and reports online as soon
    as one answers; without targets the state only changes through
    ``update()``.
    """

    def __init__(
        self,
        targets: Optional[Sequence[Tuple[str, int]]] = None,
        timeout: float = 2.0,
        initial: Optional[NetworkState] = None,
    ) -> None:
        self.targets: List[Tuple[str, int]] = list(targets or [])
        self.timeout = timeout
        self._state = initial or NetworkState(is_connected=True, is_internet_reachable=True)
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> NetworkState:
        return self._state

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a callback (sync or async); returns an unsubscribe function."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, state: NetworkState) -> None:
        if state == self._state:
            return
        logger.info(
            "Network state changed: connected=%s reachable=%s",
            state.is_connected,
            state.is_internet_reachable,
        )
        self._state = state
        for listener in list(self._listeners):
            result = listener(state)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Network listener failed", exc_info=task.exception())

    async def _probe(self, host: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError):
            logger.debug("Reachability probe to %s:%s failed", host, port)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("Closing reachability probe to %s:%s failed: %r", host, port, exc)
        return True

    async def refresh(self) -> NetworkState:
        if not self.targets:
            return self._state
        for host, port in self.targets:
            if await self._probe(host, port):
                self.update(NetworkState(is_connected=True, is_internet_reachable=True))
                return self._state
        self.update(NetworkState(is_connected=False, is_internet_reachable=False))
        return self._state

    async def fetch(self) -> NetworkState:
        """Current state, re-probed when probe targets are configured."""

        return await self.refresh()
