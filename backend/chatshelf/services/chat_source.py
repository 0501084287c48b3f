from abc import ABC, abstractmethod
from typing import Any, List, Optional
from pydantic import BaseModel
from pathlib import Path

from chatshelf.core import config as config_module


CHAT_FILE_EXTENSION = ".jsonl"


def normalize_file_name(name: Any) -> str:
    """Chat file names are compared without the .jsonl extension."""
    name = str(name)
    if name.endswith(CHAT_FILE_EXTENSION):
        name = name[: -len(CHAT_FILE_EXTENSION)]
    return name


class Owner(BaseModel):
    id: str
    name: str
    avatar: str = ""
    isGroup: bool = False
    members: List[str] = []
    # Chat ids already known from the directory listing (groups in live mode)
    chatIds: Optional[List[str]] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return f"Group {self.id}" if self.isGroup else self.id


class ChatStat(BaseModel):
    fileName: str
    lastMessage: Optional[Any] = None  # raw timestamp, parsed later
    snippet: str = ""


class ChatSource(ABC):
    """Host-side owner directory and chat listings."""

    @abstractmethod
    async def list_owners(self) -> List[Owner]:
        """List every current owner (individuals and groups)."""
        ...

    @abstractmethod
    async def list_owner_chat_files(self, owner: Owner) -> List[str]:
        """List chat file names of one owner (extension stripped)."""
        ...

    @abstractmethod
    async def list_owner_chat_stats(self, owner: Owner) -> List[ChatStat]:
        """List per-chat stats (last message timestamp and snippet) of one owner."""
        ...

    @abstractmethod
    async def rename_chat(self, owner: Owner, old_file_name: str, new_file_name: str) -> bool:
        """Rename one chat of an owner. Returns False if the host refused."""
        ...


def get_chat_source() -> ChatSource:
    """Factory function based on the chat_source_mode setting."""
    from chatshelf.services.local_chats import LocalChatSource
    from chatshelf.services.host_api import HostChatSource

    settings = config_module.settings
    if settings.chat_source_mode == "live":
        return HostChatSource(settings.host_base_url, settings.host_api_token)
    return LocalChatSource(Path(settings.local_chats_dir))
