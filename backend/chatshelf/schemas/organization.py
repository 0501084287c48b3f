"""Pydantic schemas for the persisted organization record.

The record is a single document holding the pinned chats, the folder
list, the chat-to-folders assignments and free-form settings. Records
written by older versions (missing fields, legacy key names, wrong
shapes) are migrated by `OrganizationState.from_raw`, which never raises.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


DefaultTab = Literal["characters", "recent", "folders"]

KEY_SEPARATOR = ":"


@dataclass(frozen=True)
class ChatKey:
    """Composite chat identifier (owner id, file name)."""

    owner_id: str
    file_name: str

    def to_string(self) -> str:
        return f"{self.owner_id}{KEY_SEPARATOR}{self.file_name}"

    def __str__(self) -> str:
        return self.to_string()

    @classmethod
    def from_string(cls, key: str) -> "ChatKey":
        """Split on the first separator; owner ids never contain one."""
        owner_id, _, file_name = key.partition(KEY_SEPARATOR)
        return cls(owner_id=owner_id, file_name=file_name)


class PinnedChat(BaseModel):
    ownerId: str
    fileName: str

    @property
    def chat_key(self) -> ChatKey:
        return ChatKey(self.ownerId, self.fileName)


class Folder(BaseModel):
    id: str
    name: str
    parent: Optional[str] = None


class FolderNode(Folder):
    children: List["FolderNode"] = Field(default_factory=list)


FolderNode.model_rebuild()


class OrganizationState(BaseModel):
    """Full persisted record. Unknown keys are kept as free-form settings."""

    model_config = ConfigDict(extra="allow")

    pinnedChats: List[PinnedChat] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    chatFolders: Dict[str, List[str]] = Field(default_factory=dict)
    defaultTab: DefaultTab = "characters"
    enabled: bool = True

    @classmethod
    def from_raw(cls, raw: Any) -> "OrganizationState":
        """Build a state from whatever was stored, degrading bad parts to defaults."""
        if not isinstance(raw, dict):
            return cls()

        extras = {
            k: v for k, v in raw.items()
            if k not in ("pinnedChats", "folders", "chatFolders", "defaultTab", "enabled")
        }
        default_tab = raw.get("defaultTab")
        if default_tab not in ("characters", "recent", "folders"):
            default_tab = "characters"
        enabled = raw.get("enabled", True)

        return cls(
            pinnedChats=_migrate_pinned(raw.get("pinnedChats")),
            folders=_migrate_folders(raw.get("folders")),
            chatFolders=_migrate_chat_folders(raw.get("chatFolders")),
            defaultTab=default_tab,
            enabled=enabled if isinstance(enabled, bool) else True,
            **extras,
        )

    def to_document(self) -> dict:
        return self.model_dump(mode="json")


def _migrate_pinned(raw: Any) -> List[PinnedChat]:
    if not isinstance(raw, list):
        return []
    pinned: List[PinnedChat] = []
    seen = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        # Older records used characterId / file_name
        owner_id = item.get("ownerId", item.get("characterId"))
        file_name = item.get("fileName", item.get("file_name"))
        if owner_id is None or not isinstance(file_name, str) or not file_name:
            continue
        entry = PinnedChat(ownerId=str(owner_id), fileName=file_name)
        if entry.chat_key in seen:
            continue
        seen.add(entry.chat_key)
        pinned.append(entry)
    return pinned


def _migrate_folders(raw: Any) -> List[Folder]:
    if not isinstance(raw, list):
        return []
    folders: List[Folder] = []
    seen_ids = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        folder_id = item.get("id")
        if not isinstance(folder_id, str) or not folder_id or folder_id in seen_ids:
            continue
        name = item.get("name")
        parent = item.get("parent")
        folders.append(Folder(
            id=folder_id,
            name=name if isinstance(name, str) else str(name or ""),
            parent=parent if isinstance(parent, str) and parent else None,
        ))
        seen_ids.add(folder_id)
    return folders


def _migrate_chat_folders(raw: Any) -> Dict[str, List[str]]:
    if not isinstance(raw, dict):
        return {}
    chat_folders: Dict[str, List[str]] = {}
    for key, folder_ids in raw.items():
        if not isinstance(key, str) or KEY_SEPARATOR not in key:
            continue
        if not isinstance(folder_ids, list):
            continue
        cleaned: List[str] = []
        for folder_id in folder_ids:
            if isinstance(folder_id, str) and folder_id and folder_id not in cleaned:
                cleaned.append(folder_id)
        if cleaned:
            chat_folders[key] = cleaned
    return chat_folders
