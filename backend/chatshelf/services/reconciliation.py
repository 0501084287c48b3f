"""Identity reconciliation for pinned chats and folder assignments.

Stored chat keys carry the owner id the host used at write time. The host
reassigns owner ids when owners are renamed, duplicated or the directory
is rebuilt, so after such an event the stored keys are repaired against
ground truth: a fresh listing of which owner currently holds which chat
file.

Rules:
1. A file found in ground truth under another owner is rewritten to it
2. A file not found is left alone while its owner still exists
   (the listing may have failed transiently)
3. A file not found whose owner no longer exists is dropped, for
   assignments only; pinned entries are never dropped by a remap
4. A deleted owner's entries are pruned without any lookup

Remap is idempotent, so running it again later is always safe.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from chatshelf.core.events import EventType, OrganizationEvent, REMAP_TRIGGERS
from chatshelf.schemas.organization import ChatKey, PinnedChat
from chatshelf.services.aggregation import ChatAggregator
from chatshelf.services.organization import OrganizationStore

logger = logging.getLogger(__name__)


class ChatRenameError(Exception):
    """Raised when a chat cannot be renamed through the host."""


@dataclass
class GroundTruth:
    """Current file name -> owner ids, plus the set of owners that exist."""

    owners_by_file: Dict[str, List[str]] = field(default_factory=dict)
    existing_owner_ids: Set[str] = field(default_factory=set)

    @classmethod
    def from_listing(cls, files_by_owner: Dict[str, List[str]]) -> "GroundTruth":
        owners_by_file: Dict[str, List[str]] = {}
        for owner_id, files in files_by_owner.items():
            for file_name in files:
                owners = owners_by_file.setdefault(file_name, [])
                if owner_id not in owners:
                    owners.append(owner_id)
        return cls(owners_by_file=owners_by_file, existing_owner_ids=set(files_by_owner))

    def owner_for(self, file_name: str, stored_owner_id: str) -> Optional[str]:
        """Correct owner of a file; the stored owner wins if it still holds it."""
        owners = self.owners_by_file.get(file_name)
        if not owners:
            return None
        if stored_owner_id in owners:
            return stored_owner_id
        return owners[-1]


@dataclass
class ReconciliationResult:
    pinned_rewritten: int = 0
    pinned_removed: int = 0
    assignments_rewritten: int = 0
    assignments_dropped: int = 0
    skipped: bool = False

    @property
    def changed(self) -> bool:
        return any((
            self.pinned_rewritten,
            self.pinned_removed,
            self.assignments_rewritten,
            self.assignments_dropped,
        ))


def _merge_folder_ids(target: List[str], folder_ids: List[str]) -> None:
    for folder_id in folder_ids:
        if folder_id not in target:
            target.append(folder_id)


def remap_pinned(
    pinned: List[PinnedChat],
    ground_truth: GroundTruth,
) -> Tuple[List[PinnedChat], int]:
    """Rewrite owner ids of pinned entries. Returns (entries, rewritten count)."""
    remapped = []
    rewritten = 0
    for entry in pinned:
        correct = ground_truth.owner_for(entry.fileName, entry.ownerId)
        if correct is not None and correct != entry.ownerId:
            entry = PinnedChat(ownerId=correct, fileName=entry.fileName)
            rewritten += 1
        remapped.append(entry)
    return remapped, rewritten


def remap_assignments(
    chat_folders: Dict[str, List[str]],
    ground_truth: GroundTruth,
) -> Tuple[Dict[str, List[str]], int, int]:
    """Rewrite assignment keys. Returns (map, rewritten count, dropped count)."""
    remapped: Dict[str, List[str]] = {}
    rewritten = 0
    dropped = 0
    for key, folder_ids in chat_folders.items():
        chat_key = ChatKey.from_string(key)
        correct = ground_truth.owner_for(chat_key.file_name, chat_key.owner_id)
        if correct is not None:
            new_key = ChatKey(correct, chat_key.file_name).to_string()
            if new_key != key:
                rewritten += 1
        elif chat_key.owner_id in ground_truth.existing_owner_ids:
            new_key = key
        else:
            dropped += 1
            continue
        # Merge into an existing entry instead of overwriting it
        _merge_folder_ids(remapped.setdefault(new_key, []), folder_ids)
    return remapped, rewritten, dropped


def prune_owner(
    pinned: List[PinnedChat],
    chat_folders: Dict[str, List[str]],
    owner_id: str,
) -> Tuple[List[PinnedChat], Dict[str, List[str]]]:
    """Drop every pinned entry and assignment of one owner."""
    kept_pinned = [p for p in pinned if p.ownerId != owner_id]
    kept_map = {
        key: folder_ids for key, folder_ids in chat_folders.items()
        if ChatKey.from_string(key).owner_id != owner_id
    }
    return kept_pinned, kept_map


class Reconciler:
    """Applies remap / prune / rename to the organization store."""

    def __init__(
        self,
        store: OrganizationStore,
        aggregator: ChatAggregator,
        request_refresh: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.request_refresh = request_refresh

    def _changed(self) -> None:
        if self.request_refresh is not None:
            self.request_refresh()

    async def build_ground_truth(self) -> GroundTruth:
        owners = await self.aggregator.list_owners()
        files_by_owner = await self.aggregator.fetch_chat_files(owners)
        return GroundTruth.from_listing(files_by_owner)

    async def remap(self) -> ReconciliationResult:
        ground_truth = await self.build_ground_truth()
        if not ground_truth.existing_owner_ids:
            # An empty directory means the host is not ready, not that every owner is gone
            logger.warning("Owner directory is empty, skipping remap")
            return ReconciliationResult(skipped=True)

        # Read after the awaits so mutations made during the fetch are kept
        pinned, pinned_rewritten = remap_pinned(self.store.get_pinned(), ground_truth)
        chat_folders, rewritten, dropped = remap_assignments(
            self.store.get_assignment_map(), ground_truth
        )

        result = ReconciliationResult(
            pinned_rewritten=pinned_rewritten,
            assignments_rewritten=rewritten,
            assignments_dropped=dropped,
        )
        if pinned_rewritten:
            self.store.set_pinned(pinned)
        if rewritten or dropped:
            self.store.set_assignment_map(chat_folders)

        if result.changed:
            logger.info(
                "Remapped chat references: %d pinned rewritten, %d assignments rewritten, %d dropped",
                pinned_rewritten, rewritten, dropped,
            )
            self._changed()
        return result

    def prune(self, owner_id: str) -> ReconciliationResult:
        pinned = self.store.get_pinned()
        chat_folders = self.store.get_assignment_map()
        kept_pinned, kept_map = prune_owner(pinned, chat_folders, owner_id)

        result = ReconciliationResult(
            pinned_removed=len(pinned) - len(kept_pinned),
            assignments_dropped=len(chat_folders) - len(kept_map),
        )
        if result.pinned_removed:
            self.store.set_pinned(kept_pinned)
        if result.assignments_dropped:
            self.store.set_assignment_map(kept_map)

        if result.changed:
            logger.info(
                "Pruned deleted owner %s: %d pinned, %d assignments",
                owner_id, result.pinned_removed, result.assignments_dropped,
            )
            self._changed()
        return result

    async def rename_chat(self, owner_id: str, old_file_name: str, new_file_name: str) -> None:
        """Rename a chat on the host and carry its pin and folders to the new name."""
        if not new_file_name or new_file_name == old_file_name:
            raise ChatRenameError("New chat name must differ from the old one")

        owners = {o.id: o for o in await self.aggregator.list_owners()}
        owner = owners.get(owner_id)
        if owner is None:
            raise ChatRenameError(f"Unknown owner: {owner_id}")

        existing = await self.aggregator.source.list_owner_chat_files(owner)
        if new_file_name in existing:
            raise ChatRenameError(f"A chat named {new_file_name!r} already exists")

        if not await self.aggregator.source.rename_chat(owner, old_file_name, new_file_name):
            raise ChatRenameError(f"Host refused to rename {old_file_name!r}")

        old_key = ChatKey(owner_id, old_file_name)
        new_key = ChatKey(owner_id, new_file_name)

        pinned = self.store.get_pinned()
        if any(p.chat_key == old_key for p in pinned):
            self.store.set_pinned([
                PinnedChat(ownerId=owner_id, fileName=new_file_name) if p.chat_key == old_key else p
                for p in pinned
            ])

        chat_folders = self.store.get_assignment_map()
        moved = chat_folders.pop(old_key.to_string(), None)
        if moved:
            _merge_folder_ids(chat_folders.setdefault(new_key.to_string(), []), moved)
            self.store.set_assignment_map(chat_folders)

        self._changed()


class ReconciliationHandler:
    """
    Single consumer of upstream identity-churn events.

    Each event schedules its procedure after a trigger-specific delay so
    the host can finish rebuilding its owner directory first. When a
    `directory_stable` waiter is supplied it is awaited instead of the
    fixed delay. Remaps are re-run once after `followup_delay`.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        delay_for: Callable[[str], float],
        followup_delay: float = 0.0,
        directory_stable: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.reconciler = reconciler
        self.delay_for = delay_for
        self.followup_delay = followup_delay
        self.directory_stable = directory_stable
        self._tasks: Set[asyncio.Task] = set()

    async def handle(self, event: OrganizationEvent) -> ReconciliationResult:
        """Run the procedure for an event right away."""
        if event.type == EventType.OWNER_DELETED:
            if not event.owner_id:
                return ReconciliationResult(skipped=True)
            return self.reconciler.prune(event.owner_id)
        if event.type in REMAP_TRIGGERS:
            if event.type == EventType.OWNER_RENAMED and not (event.old_owner_id and event.new_owner_id):
                return ReconciliationResult(skipped=True)
            return await self.reconciler.remap()
        return ReconciliationResult(skipped=True)

    async def _run(self, event: OrganizationEvent) -> ReconciliationResult:
        if self.directory_stable is not None and event.type in REMAP_TRIGGERS:
            await self.directory_stable()
        else:
            await asyncio.sleep(self.delay_for(event.type.value))

        result = await self.handle(event)

        if event.type in REMAP_TRIGGERS and not result.skipped and self.followup_delay > 0:
            await asyncio.sleep(self.followup_delay)
            await self.reconciler.remap()
        return result

    def dispatch(self, event: OrganizationEvent) -> asyncio.Task:
        """Schedule handling of an event (fire and forget)."""
        task = asyncio.create_task(self._run(event))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reconciliation failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for every scheduled event to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
