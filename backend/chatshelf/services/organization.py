"""Organization store: pinned chats, folders and chat-to-folder assignments.

The store is the single writer of the persisted record. Every mutation
goes through one of its setters, which persist through the StateStore
(debounced). The record is loaded lazily on first access and migrated
with `OrganizationState.from_raw`, so malformed stored data degrades to
empty collections instead of raising.
"""

import copy
import logging
import random
import time
from typing import Dict, List, Optional

from chatshelf.schemas.organization import (
    ChatKey,
    Folder,
    OrganizationState,
    PinnedChat,
)
from chatshelf.services.state_store import StateStore

logger = logging.getLogger(__name__)


def generate_folder_id() -> str:
    """Time-based id with a random suffix, e.g. folder_1718000000000_4821."""
    return f"folder_{int(time.time() * 1000)}_{random.randint(0, 9999)}"


class OrganizationStore:
    """In-memory organization record plus its persistence accessors."""

    def __init__(self, state_store: StateStore):
        self.state_store = state_store
        self._state: Optional[OrganizationState] = None
        # Latch for the folder-view refresh, see services.refresh_guard
        self.is_refreshing_folders = False

    # ---------------------------------------------------------------- state

    @property
    def state(self) -> OrganizationState:
        if self._state is None:
            raw = None
            try:
                raw = self.state_store.load()
            except Exception as e:
                logger.warning("Failed to load organization state: %s", e)
            self._state = OrganizationState.from_raw(raw)
        return self._state

    def _save(self) -> None:
        self.state_store.save_debounced(self.state.to_document())

    def to_document(self) -> dict:
        return self.state.to_document()

    def replace_state(self, state: OrganizationState) -> None:
        """Replace the whole record (import / wipe)."""
        self._state = state
        self._save()

    def update_settings(self, **values) -> None:
        """Set free-form settings (defaultTab, enabled, ...)."""
        document = self.state.to_document()
        document.update(values)
        self._state = OrganizationState.from_raw(document)
        self._save()

    # --------------------------------------------------------------- pinned

    def get_pinned(self) -> List[PinnedChat]:
        return list(self.state.pinnedChats)

    def set_pinned(self, pinned: List[PinnedChat]) -> None:
        deduped: List[PinnedChat] = []
        seen = set()
        for entry in pinned:
            if entry.chat_key in seen:
                continue
            seen.add(entry.chat_key)
            deduped.append(entry)
        self.state.pinnedChats = deduped
        self._save()

    def is_pinned(self, chat_key: ChatKey) -> bool:
        return any(p.chat_key == chat_key for p in self.state.pinnedChats)

    def toggle_pinned(self, chat_key: ChatKey) -> bool:
        """Pin or unpin a chat. Returns the new pinned state."""
        pinned = self.get_pinned()
        remaining = [p for p in pinned if p.chat_key != chat_key]
        now_pinned = len(remaining) == len(pinned)
        if now_pinned:
            remaining.append(PinnedChat(ownerId=chat_key.owner_id, fileName=chat_key.file_name))
        self.set_pinned(remaining)
        return now_pinned

    # -------------------------------------------------------------- folders

    def get_folders(self) -> List[Folder]:
        return list(self.state.folders)

    def set_folders(self, folders: List[Folder]) -> None:
        self.state.folders = list(folders)
        self._save()

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        for folder in self.state.folders:
            if folder.id == folder_id:
                return folder
        return None

    def add_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        """Create a folder. An unknown parent id makes the folder a root."""
        if parent_id is not None and self.get_folder(parent_id) is None:
            parent_id = None
        folder = Folder(id=generate_folder_id(), name=name, parent=parent_id)
        folders = self.get_folders()
        folders.append(folder)
        self.set_folders(folders)
        return folder

    def rename_folder(self, folder_id: str, name: str) -> bool:
        folders = self.get_folders()
        for i, folder in enumerate(folders):
            if folder.id == folder_id:
                folders[i] = folder.model_copy(update={"name": name})
                self.set_folders(folders)
                return True
        return False

    def remove_folder(self, folder_id: str) -> bool:
        """
        Remove a folder.

        Children of the removed folder move up to its parent, and every
        assignment to the removed folder id is pruned, so no dangling
        folder id survives the removal.
        """
        removed = self.get_folder(folder_id)
        if removed is None:
            return False

        folders = []
        for folder in self.state.folders:
            if folder.id == folder_id:
                continue
            if folder.parent == folder_id:
                folder = folder.model_copy(update={"parent": removed.parent})
            folders.append(folder)
        self.set_folders(folders)

        chat_folders = self.get_assignment_map()
        pruned: Dict[str, List[str]] = {}
        for key, folder_ids in chat_folders.items():
            kept = [f for f in folder_ids if f != folder_id]
            if kept:
                pruned[key] = kept
        if pruned != chat_folders:
            self.set_assignment_map(pruned)
        return True

    # ---------------------------------------------------------- assignments

    def get_assignment_map(self) -> Dict[str, List[str]]:
        return copy.deepcopy(self.state.chatFolders)

    def set_assignment_map(self, chat_folders: Dict[str, List[str]]) -> None:
        # Never keep a key that maps to an empty list
        self.state.chatFolders = {k: list(v) for k, v in chat_folders.items() if v}
        self._save()

    def chat_folder_ids(self, chat_key: ChatKey) -> List[str]:
        return list(self.state.chatFolders.get(chat_key.to_string(), []))

    def assign(self, chat_key: ChatKey, folder_id: str) -> None:
        chat_folders = self.get_assignment_map()
        folder_ids = chat_folders.setdefault(chat_key.to_string(), [])
        if folder_id not in folder_ids:
            folder_ids.append(folder_id)
        self.set_assignment_map(chat_folders)

    def unassign(self, chat_key: ChatKey, folder_id: str) -> None:
        chat_folders = self.get_assignment_map()
        key = chat_key.to_string()
        if key in chat_folders:
            chat_folders[key] = [f for f in chat_folders[key] if f != folder_id]
            if not chat_folders[key]:
                del chat_folders[key]
        self.set_assignment_map(chat_folders)
