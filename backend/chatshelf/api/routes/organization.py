from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Optional
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging

from chatshelf.api.deps import get_organization_engine
from chatshelf.schemas.organization import ChatKey
from chatshelf.services.engine import OrganizationEngine
from chatshelf.services.folder_tree import build_tree, iter_tree, sort_folders_by_name
from chatshelf.services.reconciliation import ChatRenameError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organization", tags=["organization"])
limiter = Limiter(key_func=get_remote_address)


class ChatRef(BaseModel):
    ownerId: str
    fileName: str

    def to_key(self) -> ChatKey:
        return ChatKey(self.ownerId, self.fileName)


class FolderCreate(BaseModel):
    name: str
    parent: Optional[str] = None


class FolderRename(BaseModel):
    name: str


class AssignmentRequest(BaseModel):
    ownerId: str
    fileName: str
    folderId: str


class ChatRenameRequest(BaseModel):
    ownerId: str
    oldFileName: str
    newFileName: str


# ============== Views ============== #

@router.get("/recent")
async def recent_chats(
    filter: str = "",
    offset: int = 0,
    reload: bool = False,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    """Pinned chats plus one page of recent chats."""
    view = await engine.recent_chats(filter.strip(), offset, reload)
    if view is None:
        return {"superseded": True}
    return view.model_dump(mode="json")


@router.get("/folders/view")
async def folder_view(engine: OrganizationEngine = Depends(get_organization_engine)):
    """Folder tree with the chats of every folder."""
    outcome = await engine.refresh_folders()
    if not outcome.ran:
        # A rebuild is in flight; serve the last completed view if there is one
        if engine.folder_view is None:
            return {"superseded": True}
        return {**engine.folder_view.model_dump(mode="json"), "superseded": True}
    return {**outcome.result.model_dump(mode="json"), "superseded": False}


@router.post("/reload")
async def reload_views(engine: OrganizationEngine = Depends(get_organization_engine)):
    """Drop caches and rebuild the folder view."""
    outcome = await engine.reload()
    return {"reloaded": outcome.ran}


# ============== Pinned ============== #

@router.get("/pinned")
async def list_pinned(engine: OrganizationEngine = Depends(get_organization_engine)):
    return {"pinned": [p.model_dump() for p in engine.store.get_pinned()]}


@router.post("/pinned/toggle")
async def toggle_pinned(req: ChatRef, engine: OrganizationEngine = Depends(get_organization_engine)):
    return {"pinned": engine.toggle_pinned(req.to_key())}


# ============== Folders ============== #

@router.get("/folders")
async def list_folders(engine: OrganizationEngine = Depends(get_organization_engine)):
    """Flat folder list plus an indented picker order."""
    folders = engine.store.get_folders()
    tree = build_tree(sort_folders_by_name(folders))
    return {
        "folders": [f.model_dump() for f in folders],
        "picker": [
            {"id": node.id, "name": node.name, "level": level}
            for level, node in iter_tree(tree)
        ],
    }


@router.post("/folders")
async def create_folder(req: FolderCreate, engine: OrganizationEngine = Depends(get_organization_engine)):
    name = req.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Folder name is required")
    folder = engine.add_folder(name, req.parent)
    return folder.model_dump()


@router.patch("/folders/{folder_id}")
async def rename_folder(
    folder_id: str,
    req: FolderRename,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    name = req.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Folder name is required")
    if not engine.rename_folder(folder_id, name):
        raise HTTPException(status_code=404, detail="Folder not found")
    return {"id": folder_id, "name": name}


@router.delete("/folders/{folder_id}")
async def delete_folder(folder_id: str, engine: OrganizationEngine = Depends(get_organization_engine)):
    if not engine.remove_folder(folder_id):
        raise HTTPException(status_code=404, detail="Folder not found")
    return {"status": "deleted"}


# ============== Assignments ============== #

@router.get("/assignments")
async def chat_folders(
    ownerId: str,
    fileName: str,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    return {"folderIds": engine.store.chat_folder_ids(ChatKey(ownerId, fileName))}


@router.post("/assignments")
async def assign_chat(req: AssignmentRequest, engine: OrganizationEngine = Depends(get_organization_engine)):
    if engine.store.get_folder(req.folderId) is None:
        raise HTTPException(status_code=404, detail="Folder not found")
    key = ChatKey(req.ownerId, req.fileName)
    engine.assign(key, req.folderId)
    return {"folderIds": engine.store.chat_folder_ids(key)}


@router.delete("/assignments")
async def unassign_chat(req: AssignmentRequest, engine: OrganizationEngine = Depends(get_organization_engine)):
    key = ChatKey(req.ownerId, req.fileName)
    engine.unassign(key, req.folderId)
    return {"folderIds": engine.store.chat_folder_ids(key)}


# ============== Chat rename ============== #

@router.post("/chats/rename")
@limiter.limit("20/minute")
async def rename_chat(
    request: Request,
    req: ChatRenameRequest,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    """Rename a chat on the host and carry its pin and folder assignments along."""
    try:
        await engine.rename_chat(req.ownerId, req.oldFileName, req.newFileName.strip())
    except ChatRenameError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception("Chat rename failed for %s:%s: %s", req.ownerId, req.oldFileName, str(e))
        raise HTTPException(status_code=502, detail="Host rename failed")
    return {"ownerId": req.ownerId, "fileName": req.newFileName.strip()}
