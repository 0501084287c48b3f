"""Organization engine: wires the store, aggregation, reconciliation and refresh guard.

Entry points for user actions and upstream events live here. Every user
mutation that touches pinned chats, folders or assignments drops the
recent-view cache and requests a (debounced) view refresh.
"""

import asyncio
from pathlib import Path
from typing import Optional

from chatshelf.core.config import Settings
from chatshelf.core.events import OrganizationEvent
from chatshelf.schemas.organization import ChatKey, Folder
from chatshelf.services.aggregation import (
    ChatAggregator,
    FolderView,
    RecentChatsSession,
    RecentChatsView,
    build_folder_view,
)
from chatshelf.services.chat_source import ChatSource, get_chat_source
from chatshelf.services.event_bus import EventBus
from chatshelf.services.organization import OrganizationStore
from chatshelf.services.reconciliation import Reconciler, ReconciliationHandler
from chatshelf.services.refresh_guard import DebouncedRefresh, RefreshGuard, RefreshOutcome
from chatshelf.services.state_store import StateStore

# Singleton instance
_engine_instance: Optional["OrganizationEngine"] = None


class OrganizationEngine:
    def __init__(
        self,
        store: OrganizationStore,
        source: ChatSource,
        settings: Settings,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.settings = settings
        self.aggregator = ChatAggregator(
            source,
            fetch_timeout=settings.fetch_timeout_seconds,
            max_concurrent_fetches=settings.max_concurrent_fetches,
        )
        self.recent = RecentChatsSession(self.aggregator, page_size=settings.page_size)
        self.refresh = DebouncedRefresh(settings.refresh_debounce_seconds)
        self.reconciler = Reconciler(store, self.aggregator, request_refresh=self.refresh.request)
        self.events = ReconciliationHandler(
            self.reconciler,
            delay_for=settings.remap_delay_for,
            followup_delay=settings.remap_followup_delay,
        )
        self.guard = RefreshGuard(store)
        self.folder_view: Optional[FolderView] = None

        self.refresh.add_listener(self.recent.invalidate)
        self.refresh.add_listener(self.refresh_folders)
        if bus is not None:
            self.refresh.add_listener(bus.request_view_refresh)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: Optional[ChatSource] = None,
        bus: Optional[EventBus] = None,
    ) -> "OrganizationEngine":
        state_store = StateStore(Path(settings.state_file), settings.save_debounce_seconds)
        return cls(OrganizationStore(state_store), source or get_chat_source(), settings, bus)

    # ---------------------------------------------------------------- views

    async def recent_chats(
        self,
        filter_text: str = "",
        offset: int = 0,
        reload: bool = False,
    ) -> Optional[RecentChatsView]:
        if reload:
            self.recent.invalidate()
        return await self.recent.populate(self.store.get_pinned(), filter_text, offset)

    async def _build_folder_view(self) -> FolderView:
        aggregated = await self.aggregator.collect()
        view = build_folder_view(
            aggregated,
            self.store.get_folders(),
            self.store.get_assignment_map(),
            self.store.get_pinned(),
        )
        self.folder_view = view
        return view

    async def refresh_folders(self) -> RefreshOutcome[FolderView]:
        """Rebuild the folder view unless a rebuild is already running."""
        return await self.guard.run(self._build_folder_view)

    async def reload(self) -> RefreshOutcome[FolderView]:
        """Manual reload of both views."""
        self.recent.invalidate()
        return await self.refresh_folders()

    # --------------------------------------------------------- user actions

    def _mutated(self) -> None:
        self.recent.invalidate()
        self.refresh.request()

    def toggle_pinned(self, chat_key: ChatKey) -> bool:
        pinned = self.store.toggle_pinned(chat_key)
        self._mutated()
        return pinned

    def add_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        folder = self.store.add_folder(name, parent_id)
        self._mutated()
        return folder

    def rename_folder(self, folder_id: str, name: str) -> bool:
        renamed = self.store.rename_folder(folder_id, name)
        if renamed:
            self._mutated()
        return renamed

    def remove_folder(self, folder_id: str) -> bool:
        removed = self.store.remove_folder(folder_id)
        if removed:
            self._mutated()
        return removed

    def assign(self, chat_key: ChatKey, folder_id: str) -> None:
        self.store.assign(chat_key, folder_id)
        self._mutated()

    def unassign(self, chat_key: ChatKey, folder_id: str) -> None:
        self.store.unassign(chat_key, folder_id)
        self._mutated()

    async def rename_chat(self, owner_id: str, old_file_name: str, new_file_name: str) -> None:
        await self.reconciler.rename_chat(owner_id, old_file_name, new_file_name)
        self.recent.invalidate()

    # ------------------------------------------------------ upstream events

    def notify(self, event: OrganizationEvent) -> asyncio.Task:
        return self.events.dispatch(event)

    async def shutdown(self) -> None:
        self.events.cancel_all()
        self.store.state_store.flush()


def get_engine() -> OrganizationEngine:
    """Get or create the engine singleton from the current settings."""
    global _engine_instance
    if _engine_instance is None:
        from chatshelf.core import config as config_module
        from chatshelf.services.event_bus import event_bus

        _engine_instance = OrganizationEngine.from_settings(config_module.settings, bus=event_bus)
    return _engine_instance


def reset_engine() -> None:
    global _engine_instance
    _engine_instance = None


async def shutdown_engine() -> None:
    """Shut down the engine singleton if one was created."""
    if _engine_instance is not None:
        await _engine_instance.shutdown()
