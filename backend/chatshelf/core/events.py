from enum import Enum
from pydantic import BaseModel
from datetime import datetime, timezone
from typing import Optional
import uuid


class EventType(str, Enum):
    # Upstream identity churn (inbound)
    OWNER_RENAMED = "owner_renamed"
    OWNER_DELETED = "owner_deleted"
    OWNER_DUPLICATED = "owner_duplicated"
    DIRECTORY_RELOADED = "directory_reloaded"
    DIRECTORY_PAGE_LOADED = "directory_page_loaded"

    # Outbound
    VIEW_REFRESH_REQUESTED = "view_refresh_requested"


REMAP_TRIGGERS = {
    EventType.OWNER_RENAMED,
    EventType.OWNER_DUPLICATED,
    EventType.DIRECTORY_RELOADED,
    EventType.DIRECTORY_PAGE_LOADED,
}


class OrganizationEvent(BaseModel):
    id: str
    type: EventType
    timestamp: datetime
    data: dict = {}
    old_owner_id: Optional[str] = None
    new_owner_id: Optional[str] = None
    owner_id: Optional[str] = None

    @classmethod
    def create(
        cls,
        event_type: EventType,
        data: Optional[dict] = None,
        old_owner_id: Optional[str] = None,
        new_owner_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> "OrganizationEvent":
        return cls(
            id=str(uuid.uuid4()),
            type=event_type,
            timestamp=datetime.now(timezone.utc),
            data=data or {},
            old_owner_id=old_owner_id,
            new_owner_id=new_owner_id,
            owner_id=owner_id,
        )

    @classmethod
    def owner_renamed(cls, old_owner_id: str, new_owner_id: str) -> "OrganizationEvent":
        return cls.create(
            EventType.OWNER_RENAMED,
            old_owner_id=old_owner_id,
            new_owner_id=new_owner_id,
        )

    @classmethod
    def owner_deleted(cls, owner_id: str) -> "OrganizationEvent":
        return cls.create(EventType.OWNER_DELETED, owner_id=owner_id)
