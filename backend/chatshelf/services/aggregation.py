"""Chat aggregation pipeline.

Fans out over every owner to list chat files and then chat stats, joins
the two into ChatRecords and derives the views the UI shows:

1. Recent view: dated chats, newest first, filtered, paginated, grouped
   by calendar day, with pinned chats listed separately in name order.
2. Folder view: chats grouped by folder assignment, with the folder tree.

A failing or slow owner only loses its own contribution; the pass as a
whole never raises because of one owner.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel

from chatshelf.schemas.organization import ChatKey, Folder, FolderNode, PinnedChat
from chatshelf.services.chat_source import ChatSource, ChatStat, Owner, normalize_file_name
from chatshelf.services.folder_tree import build_tree, sort_folders_by_name
from chatshelf.services.timestamps import date_key, parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 100


class ChatRecord(BaseModel):
    """A chat after joining its file listing with its stats."""

    ownerId: str
    ownerName: str
    avatar: str = ""
    isGroup: bool = False
    groupMembers: List[str] = []
    fileName: str
    stat: Optional[ChatStat] = None
    lastActivity: Optional[datetime] = None

    @property
    def chat_key(self) -> ChatKey:
        return ChatKey(self.ownerId, self.fileName)


class DateGroup(BaseModel):
    date: str
    chats: List[ChatRecord]


class RecentChatsView(BaseModel):
    pinned: List[ChatRecord]
    chats: List[ChatRecord]
    dateGroups: List[DateGroup]
    totalChats: int
    offset: int
    pageSize: int
    hasMore: bool
    sequence: int = 0


class FolderView(BaseModel):
    tree: List[FolderNode]
    chatsByFolder: Dict[str, List[ChatRecord]]
    pinned: List[ChatRecord]


@dataclass
class AggregatedChats:
    """Joined, pre-filter result of one pass; safe to cache per view session."""

    owners: Dict[str, Owner] = field(default_factory=dict)
    stats: Dict[str, ChatStat] = field(default_factory=dict)
    records: List[ChatRecord] = field(default_factory=list)

    def __post_init__(self):
        self.by_key: Dict[str, ChatRecord] = {r.chat_key.to_string(): r for r in self.records}
        dated = [r for r in self.records if r.lastActivity is not None]
        # sorted() is stable, so ties keep insertion order
        self.ordered: List[ChatRecord] = sorted(dated, key=lambda r: r.lastActivity, reverse=True)
        self.undated: List[ChatRecord] = [r for r in self.records if r.lastActivity is None]

    def lookup(self, chat_key: ChatKey) -> Optional[ChatRecord]:
        return self.by_key.get(chat_key.to_string())


class ChatAggregator:
    """Runs the concurrent fetch / join steps against a ChatSource."""

    def __init__(
        self,
        source: ChatSource,
        fetch_timeout: float = 10.0,
        max_concurrent_fetches: int = 8,
    ):
        self.source = source
        self.fetch_timeout = fetch_timeout
        self.max_concurrent_fetches = max_concurrent_fetches

    async def _guarded(
        self,
        semaphore: asyncio.Semaphore,
        fetch: Callable[[], Awaitable[List[T]]],
        what: str,
        owner_id: str,
    ) -> List[T]:
        """Run one fetch; failure or timeout becomes an empty result."""
        async with semaphore:
            try:
                result = await asyncio.wait_for(fetch(), timeout=self.fetch_timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out fetching %s for owner %s", what, owner_id)
                return []
            except Exception as e:
                logger.warning("Failed to fetch %s for owner %s: %s", what, owner_id, e)
                return []
        return result if isinstance(result, list) else []

    async def list_owners(self) -> List[Owner]:
        try:
            return await asyncio.wait_for(self.source.list_owners(), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out listing owners")
        except Exception as e:
            logger.warning("Failed to list owners: %s", e)
        return []

    async def fetch_chat_files(self, owners: List[Owner]) -> Dict[str, List[str]]:
        """Step 1: chat file names per owner id, fetched concurrently."""
        semaphore = asyncio.Semaphore(self.max_concurrent_fetches)

        async def fetch_one(owner: Owner) -> List[str]:
            files = await self._guarded(
                semaphore,
                lambda: self.source.list_owner_chat_files(owner),
                "chat files",
                owner.id,
            )
            return [normalize_file_name(f) for f in files if isinstance(f, str) and f]

        results = await asyncio.gather(*(fetch_one(owner) for owner in owners))
        return {owner.id: files for owner, files in zip(owners, results)}

    async def fetch_chat_stats(self, owners: List[Owner]) -> Dict[str, ChatStat]:
        """Step 2: stats keyed by chat key string, fetched concurrently."""
        semaphore = asyncio.Semaphore(self.max_concurrent_fetches)

        async def fetch_one(owner: Owner) -> List[ChatStat]:
            return await self._guarded(
                semaphore,
                lambda: self.source.list_owner_chat_stats(owner),
                "chat stats",
                owner.id,
            )

        results = await asyncio.gather(*(fetch_one(owner) for owner in owners))
        stats: Dict[str, ChatStat] = {}
        for owner, owner_stats in zip(owners, results):
            for stat in owner_stats:
                if not isinstance(stat, ChatStat):
                    continue
                stats[ChatKey(owner.id, normalize_file_name(stat.fileName)).to_string()] = stat
        return stats

    async def collect(self, owners: Optional[List[Owner]] = None) -> AggregatedChats:
        """Steps 1 to 3: fetch, join and timestamp every chat of every owner."""
        if owners is None:
            owners = await self.list_owners()

        files_by_owner = await self.fetch_chat_files(owners)
        owners_with_chats = [o for o in owners if files_by_owner.get(o.id)]
        stats = await self.fetch_chat_stats(owners_with_chats)

        records: List[ChatRecord] = []
        seen = set()
        for owner in owners:
            for file_name in files_by_owner.get(owner.id, []):
                key = ChatKey(owner.id, file_name).to_string()
                if key in seen:
                    continue
                seen.add(key)
                stat = stats.get(key)
                records.append(ChatRecord(
                    ownerId=owner.id,
                    ownerName=owner.display_name,
                    avatar=owner.avatar,
                    isGroup=owner.isGroup,
                    groupMembers=list(owner.members) if owner.isGroup else [],
                    fileName=file_name,
                    stat=stat,
                    lastActivity=parse_timestamp(stat.lastMessage) if stat else None,
                ))

        return AggregatedChats(
            owners={o.id: o for o in owners},
            stats=stats,
            records=records,
        )


def chat_matches(record: ChatRecord, filter_text: str) -> bool:
    """Case-insensitive substring match on owner name, file name and snippet."""
    needle = (filter_text or "").strip().lower()
    if not needle:
        return True
    if needle in record.ownerName.lower() or needle in record.fileName.lower():
        return True
    return bool(record.stat and needle in record.stat.snippet.lower())


def resolve_pinned(aggregated: AggregatedChats, pinned: List[PinnedChat]) -> List[ChatRecord]:
    """
    Map pinned entries to records.

    A pinned chat missing from the joined records (no timestamp, owner
    listing failed, chat gone) gets a synthesized record from whatever is
    known about its owner.
    """
    records = []
    for entry in pinned:
        record = aggregated.lookup(entry.chat_key)
        if record is None:
            owner = aggregated.owners.get(entry.ownerId)
            stat = aggregated.stats.get(entry.chat_key.to_string())
            record = ChatRecord(
                ownerId=entry.ownerId,
                ownerName=owner.display_name if owner else entry.ownerId,
                avatar=owner.avatar if owner else "",
                isGroup=owner.isGroup if owner else False,
                groupMembers=list(owner.members) if owner and owner.isGroup else [],
                fileName=entry.fileName,
                stat=stat,
                lastActivity=parse_timestamp(stat.lastMessage) if stat else None,
            )
        records.append(record)
    return records


def sort_pinned(records: List[ChatRecord]) -> List[ChatRecord]:
    return sorted(records, key=lambda r: (r.ownerName.lower(), r.fileName.lower()))


def group_by_date(records: List[ChatRecord]) -> List[DateGroup]:
    """Consecutive records sharing a calendar day form one group."""
    groups: List[DateGroup] = []
    for record in records:
        day = date_key(record.lastActivity) if record.lastActivity else ""
        if not groups or groups[-1].date != day:
            groups.append(DateGroup(date=day, chats=[]))
        groups[-1].chats.append(record)
    return groups


def build_recent_view(
    aggregated: AggregatedChats,
    pinned: List[PinnedChat],
    filter_text: str = "",
    offset: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> RecentChatsView:
    """Steps 4 to 7: order, filter, split off pinned chats and paginate."""
    offset = max(0, offset)
    page_size = max(1, page_size)
    pinned_keys = {p.chat_key for p in pinned}

    pinned_records = sort_pinned(
        [r for r in resolve_pinned(aggregated, pinned) if chat_matches(r, filter_text)]
    )
    filtered = [
        r for r in aggregated.ordered
        if r.chat_key not in pinned_keys and chat_matches(r, filter_text)
    ]
    page = filtered[offset:offset + page_size]

    return RecentChatsView(
        pinned=pinned_records,
        chats=page,
        dateGroups=group_by_date(page),
        totalChats=len(filtered),
        offset=offset,
        pageSize=page_size,
        hasMore=offset + page_size < len(filtered),
    )


def build_foldered_chats(
    records: List[ChatRecord],
    folders: List[Folder],
    chat_folders: Dict[str, List[str]],
) -> Dict[str, List[ChatRecord]]:
    """Every existing folder id mapped to its chats; unknown folder ids are ignored."""
    foldered: Dict[str, List[ChatRecord]] = {folder.id: [] for folder in folders}
    for record in records:
        for folder_id in chat_folders.get(record.chat_key.to_string(), []):
            if folder_id in foldered:
                foldered[folder_id].append(record)
    return foldered


def build_folder_view(
    aggregated: AggregatedChats,
    folders: List[Folder],
    chat_folders: Dict[str, List[str]],
    pinned: List[PinnedChat],
) -> FolderView:
    # Folders show every joined chat, dated ones first
    records = aggregated.ordered + aggregated.undated
    return FolderView(
        tree=build_tree(sort_folders_by_name(folders)),
        chatsByFolder=build_foldered_chats(records, folders, chat_folders),
        pinned=sort_pinned(resolve_pinned(aggregated, pinned)),
    )


class RecentChatsSession:
    """
    One recent-view session: caches the joined records across filter and
    pagination changes and drops results of superseded passes.
    """

    def __init__(self, aggregator: ChatAggregator, page_size: int = DEFAULT_PAGE_SIZE):
        self.aggregator = aggregator
        self.page_size = page_size
        self.cache: Optional[AggregatedChats] = None
        self._sequence = 0
        # Bumped on every invalidate; a pass started under an older
        # generation must not repopulate the cache
        self._generation = 0

    def invalidate(self) -> None:
        """Drop the cache; call after any rename / pin / assignment mutation."""
        self.cache = None
        self._generation += 1

    async def populate(
        self,
        pinned: List[PinnedChat],
        filter_text: str = "",
        offset: int = 0,
    ) -> Optional[RecentChatsView]:
        """Return the requested page, or None if a newer pass was started meanwhile."""
        self._sequence += 1
        sequence = self._sequence

        aggregated = self.cache
        if aggregated is None:
            generation = self._generation
            aggregated = await self.aggregator.collect()
            if sequence != self._sequence:
                return None
            if generation == self._generation:
                self.cache = aggregated

        view = build_recent_view(aggregated, pinned, filter_text, offset, self.page_size)
        view.sequence = sequence
        return view
