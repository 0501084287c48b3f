from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional

from chatshelf.api.deps import get_organization_engine
from chatshelf.core.events import EventType, OrganizationEvent
from chatshelf.services.engine import OrganizationEngine

router = APIRouter(prefix="/events", tags=["events"])

INBOUND_EVENTS = {
    EventType.OWNER_RENAMED,
    EventType.OWNER_DELETED,
    EventType.OWNER_DUPLICATED,
    EventType.DIRECTORY_RELOADED,
    EventType.DIRECTORY_PAGE_LOADED,
}


class EventNotification(BaseModel):
    type: EventType
    oldOwnerId: Optional[str] = None
    newOwnerId: Optional[str] = None
    ownerId: Optional[str] = None


@router.post("", status_code=202)
async def notify(req: EventNotification, engine: OrganizationEngine = Depends(get_organization_engine)):
    """Accept an upstream owner-directory notification; reconciliation runs in the background."""
    if req.type not in INBOUND_EVENTS:
        raise HTTPException(status_code=400, detail=f"Not an inbound event: {req.type.value}")
    if req.type == EventType.OWNER_DELETED and not req.ownerId:
        raise HTTPException(status_code=400, detail="ownerId is required for owner_deleted")

    event = OrganizationEvent.create(
        req.type,
        old_owner_id=req.oldOwnerId,
        new_owner_id=req.newOwnerId,
        owner_id=req.ownerId,
    )
    engine.notify(event)
    return {"accepted": True, "eventId": event.id}
