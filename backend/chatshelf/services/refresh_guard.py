"""Refresh guard and debounced refresh requests.

The folder-view refresh is an expensive multi-fetch pass. A single latch
on the OrganizationStore keeps two refreshes from interleaving: a request
arriving while one is in flight is dropped, not queued, and the caller is
told so through `RefreshOutcome.ran`.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from chatshelf.services.organization import OrganizationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RefreshOutcome(Generic[T]):
    ran: bool
    result: Optional[T] = None

    @property
    def superseded(self) -> bool:
        """True when the request was dropped because a refresh was in flight."""
        return not self.ran


class RefreshGuard:
    """Boolean latch kept on the store; released even if the refresh fails."""

    def __init__(self, store: OrganizationStore):
        self.store = store

    @property
    def in_flight(self) -> bool:
        return self.store.is_refreshing_folders

    async def run(self, refresh: Callable[[], Awaitable[T]]) -> RefreshOutcome[T]:
        if self.store.is_refreshing_folders:
            return RefreshOutcome(ran=False)
        self.store.is_refreshing_folders = True
        try:
            return RefreshOutcome(ran=True, result=await refresh())
        finally:
            self.store.is_refreshing_folders = False


class DebouncedRefresh:
    """
    Collapses bursts of refresh requests into one call of every listener.

    Listeners are plain callables or coroutine functions. Without a running
    loop, listeners are not called; the next view request re-aggregates.
    """

    def __init__(self, delay: float = 0.1):
        self.delay = delay
        self.listeners: List[Callable[[], Any]] = []
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set = set()

    def add_listener(self, listener: Callable[[], Any]) -> None:
        self.listeners.append(listener)

    def request(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self.notify())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def notify(self) -> None:
        """Call every listener now; one failing listener does not stop the rest."""
        for listener in self.listeners:
            try:
                result = listener()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Refresh listener failed: %s", e)
