from pathlib import Path
from typing import List, Optional
import asyncio
import json

from chatshelf.services.chat_source import (
    CHAT_FILE_EXTENSION,
    ChatSource,
    ChatStat,
    Owner,
    normalize_file_name,
)


class LocalChatSource(ChatSource):
    """Chat source that reads owners and chats from the local file system (mock mode).

    Layout::

        <base>/characters/<owner id>/<chat>.jsonl
        <base>/groups/<owner id>/<chat>.jsonl
        <base>/<kind>/<owner id>/owner.json   (optional: name, avatar, members)
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path).resolve()
        if not self.base_path.exists():
            self.base_path.mkdir(parents=True, exist_ok=True)

    def _owner_dir(self, owner: Owner) -> Path:
        kind = "groups" if owner.isGroup else "characters"
        path = (self.base_path / kind / owner.id).resolve()
        # Ensure path is within base_path (prevent traversal)
        if not str(path).startswith(str(self.base_path)):
            raise ValueError("Path traversal detected")
        return path

    def _chat_path(self, owner: Owner, file_name: str) -> Path:
        path = (self._owner_dir(owner) / f"{file_name}{CHAT_FILE_EXTENSION}").resolve()
        if not str(path).startswith(str(self.base_path)):
            raise ValueError("Path traversal detected")
        return path

    def _read_owner_meta(self, owner_dir: Path) -> dict:
        meta_path = owner_dir / "owner.json"
        if not meta_path.exists():
            return {}
        try:
            data = json.loads(meta_path.read_text())
        except (json.JSONDecodeError, IOError):
            return {}
        return data if isinstance(data, dict) else {}

    async def list_owners(self) -> List[Owner]:
        owners = []
        for kind, is_group in (("characters", False), ("groups", True)):
            kind_dir = self.base_path / kind
            if not kind_dir.is_dir():
                continue
            for item in sorted(kind_dir.iterdir()):
                if not item.is_dir():
                    continue
                meta = self._read_owner_meta(item)
                owners.append(
                    Owner(
                        id=item.name,
                        name=str(meta.get("name") or item.name),
                        avatar=str(meta.get("avatar") or ""),
                        isGroup=is_group,
                        members=[str(m) for m in meta.get("members", []) if m],
                    )
                )
        return owners

    async def list_owner_chat_files(self, owner: Owner) -> List[str]:
        owner_dir = self._owner_dir(owner)
        if not owner_dir.is_dir():
            return []
        return sorted(
            normalize_file_name(item.name)
            for item in owner_dir.iterdir()
            if item.is_file() and item.name.endswith(CHAT_FILE_EXTENSION)
        )

    async def list_owner_chat_stats(self, owner: Owner) -> List[ChatStat]:
        stats = []
        for file_name in await self.list_owner_chat_files(owner):
            last = await asyncio.to_thread(self._read_last_message, self._chat_path(owner, file_name))
            stats.append(
                ChatStat(
                    fileName=file_name,
                    lastMessage=last.get("send_date") if last else None,
                    snippet=str(last.get("mes") or "") if last else "",
                )
            )
        return stats

    def _read_last_message(self, path: Path) -> Optional[dict]:
        """Last JSON line of a chat file, or None if there is none."""
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (IOError, UnicodeDecodeError):
            return None
        for line in reversed(lines):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                return None
            return data if isinstance(data, dict) else None
        return None

    async def rename_chat(self, owner: Owner, old_file_name: str, new_file_name: str) -> bool:
        old_path = self._chat_path(owner, old_file_name)
        new_path = self._chat_path(owner, new_file_name)
        if not old_path.exists() or new_path.exists():
            return False
        old_path.rename(new_path)
        return True
