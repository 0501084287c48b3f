"""Chat source backed by the host application's HTTP API (live mode).

Owner ids for individual owners are their position in the host's
character list, which is why they shift when the host renames, deletes or
duplicates a character. Group ids are the host's group ids.
"""

from typing import List
import logging

import httpx

from chatshelf.services.chat_source import ChatSource, ChatStat, Owner, normalize_file_name

logger = logging.getLogger(__name__)


class HostChatSource(ChatSource):
    """Chat source that talks to the host over HTTP."""

    def __init__(self, base_url: str, api_token: str = "", timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _post(self, path: str, payload: dict | None = None):
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}{path}",
                json=payload or {},
                headers=self._headers(),
            )
            response.raise_for_status()
            return response.json()

    async def list_owners(self) -> List[Owner]:
        owners = []

        characters = await self._post("/api/characters/all")
        if isinstance(characters, list):
            for index, char in enumerate(characters):
                if not isinstance(char, dict):
                    continue
                owners.append(Owner(
                    id=str(index),
                    name=str(char.get("name") or index),
                    avatar=str(char.get("avatar") or ""),
                ))

        groups = await self._post("/api/groups/all")
        if isinstance(groups, list):
            for group in groups:
                if not isinstance(group, dict) or group.get("id") is None:
                    continue
                owners.append(Owner(
                    id=str(group["id"]),
                    name=str(group.get("name") or ""),
                    avatar=str(group.get("avatar_url") or ""),
                    isGroup=True,
                    members=[str(m) for m in group.get("members") or []],
                    chatIds=self._group_chat_ids(group),
                ))

        return owners

    @staticmethod
    def _group_chat_ids(group: dict) -> List[str]:
        return [normalize_file_name(c) for c in group.get("chats") or [] if c]

    async def _list_group_chat_ids(self, owner: Owner) -> List[str]:
        """Chat ids of a group; taken from the owner listing when it carried them."""
        if owner.chatIds is not None:
            return list(owner.chatIds)
        groups = await self._post("/api/groups/all")
        if not isinstance(groups, list):
            return []
        for group in groups:
            if isinstance(group, dict) and str(group.get("id")) == owner.id:
                return self._group_chat_ids(group)
        return []

    async def list_owner_chat_files(self, owner: Owner) -> List[str]:
        if owner.isGroup:
            return await self._list_group_chat_ids(owner)

        data = await self._post(
            "/api/characters/chats",
            {"avatar_url": owner.avatar, "simple": True},
        )
        if not isinstance(data, list):
            logger.warning("Skipping chats of owner %s: response is not a list", owner.id)
            return []
        return [
            normalize_file_name(item["file_name"])
            for item in data
            if isinstance(item, dict) and item.get("file_name")
        ]

    async def list_owner_chat_stats(self, owner: Owner) -> List[ChatStat]:
        if owner.isGroup:
            stats = []
            for chat_id in await self._list_group_chat_ids(owner):
                messages = await self._post("/api/chats/group/get", {"id": chat_id})
                last = messages[-1] if isinstance(messages, list) and messages else {}
                if not isinstance(last, dict):
                    last = {}
                stats.append(ChatStat(
                    fileName=chat_id,
                    lastMessage=last.get("send_date"),
                    snippet=str(last.get("mes") or ""),
                ))
            return stats

        data = await self._post("/api/characters/chats", {"avatar_url": owner.avatar})
        if not isinstance(data, list):
            return []
        return [
            ChatStat(
                fileName=normalize_file_name(item["file_name"]),
                lastMessage=item.get("last_mes"),
                snippet=str(item.get("mes") or ""),
            )
            for item in data
            if isinstance(item, dict) and item.get("file_name")
        ]

    async def rename_chat(self, owner: Owner, old_file_name: str, new_file_name: str) -> bool:
        payload = {
            "is_group": owner.isGroup,
            "avatar_url": owner.avatar,
            "original_file": f"{old_file_name}.jsonl",
            "renamed_file": f"{new_file_name}.jsonl",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/api/chats/rename",
                json=payload,
                headers=self._headers(),
            )
        if response.status_code != 200:
            logger.warning(
                "Host refused rename of %s:%s (status %d)",
                owner.id, old_file_name, response.status_code,
            )
            return False
        try:
            result = response.json()
        except ValueError:
            return True
        return not (isinstance(result, dict) and result.get("error"))
