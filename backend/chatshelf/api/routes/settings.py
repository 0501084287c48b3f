from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Optional
from slowapi import Limiter
from slowapi.util import get_remote_address

from chatshelf.api.deps import get_organization_engine
from chatshelf.core.config import (
    save_settings_to_file,
    reload_settings,
    load_settings_from_file,
)
from chatshelf.core import config as config_module
from chatshelf.schemas.organization import DefaultTab
from chatshelf.services.backup import (
    EXPORT_FILE_NAME,
    ConfirmationRequiredError,
    ImportRejectedError,
    export_state,
    import_state,
    wipe_state,
)
from chatshelf.services.engine import OrganizationEngine, reset_engine, shutdown_engine

router = APIRouter(prefix="/settings", tags=["settings"])
limiter = Limiter(key_func=get_remote_address)


class SettingsUpdate(BaseModel):
    chat_source_mode: Optional[str] = None
    local_chats_dir: Optional[str] = None
    host_base_url: Optional[str] = None
    host_api_token: Optional[str] = None
    page_size: Optional[int] = None
    fetch_timeout_seconds: Optional[float] = None


class PreferencesUpdate(BaseModel):
    defaultTab: Optional[DefaultTab] = None
    enabled: Optional[bool] = None


class ImportRequest(BaseModel):
    document: str
    confirm: bool = False


class WipeRequest(BaseModel):
    confirm: bool = False


# TODO: [SECURITY] Add authentication middleware before production deployment
# See: https://fastapi.tiangolo.com/tutorial/security/
@router.get("")
async def get_settings():
    """Retrieve current service settings with masked secrets."""
    return config_module.settings.get_effective_settings()


@router.post("")
async def update_settings(update: SettingsUpdate):
    """Update service settings, save them to the local file and rebuild the engine."""
    current = load_settings_from_file()

    if update.chat_source_mode is not None:
        if update.chat_source_mode not in ("mock", "live"):
            raise HTTPException(
                status_code=400,
                detail="chat_source_mode must be 'mock' or 'live'",
            )
        current["chat_source_mode"] = update.chat_source_mode

    if update.page_size is not None:
        if update.page_size < 1:
            raise HTTPException(status_code=400, detail="page_size must be positive")
        current["page_size"] = update.page_size

    for field_name in ("local_chats_dir", "host_base_url", "host_api_token", "fetch_timeout_seconds"):
        value = getattr(update, field_name)
        if value is not None:
            current[field_name] = value

    save_settings_to_file(current)

    # Write pending state and stop scheduled reconciliation before the
    # next engine reloads the state file
    await shutdown_engine()
    new_settings = reload_settings()
    reset_engine()

    return new_settings.get_effective_settings()


@router.get("/preferences")
async def get_preferences(engine: OrganizationEngine = Depends(get_organization_engine)):
    state = engine.store.state
    return {"defaultTab": state.defaultTab, "enabled": state.enabled}


@router.post("/preferences")
async def update_preferences(
    update: PreferencesUpdate,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    engine.store.update_settings(**update.model_dump(exclude_none=True))
    state = engine.store.state
    return {"defaultTab": state.defaultTab, "enabled": state.enabled}


# ============== Backup ============== #

@router.get("/export")
async def export_organization(engine: OrganizationEngine = Depends(get_organization_engine)):
    """Download the organization record as a JSON document."""
    return Response(
        content=export_state(engine.store),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILE_NAME}"'},
    )


@router.post("/import")
@limiter.limit("5/minute")
async def import_organization(
    request: Request,
    req: ImportRequest,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    """Replace the organization record with an exported document."""
    try:
        import_state(engine.store, req.document, confirm=req.confirm)
    except ImportRejectedError as e:
        raise HTTPException(status_code=400, detail=f"Failed to import: {e}")
    except ConfirmationRequiredError as e:
        raise HTTPException(status_code=409, detail=str(e))

    engine.recent.invalidate()
    engine.refresh.request()
    return {"status": "imported"}


@router.post("/wipe")
@limiter.limit("5/minute")
async def wipe_organization(
    request: Request,
    req: WipeRequest,
    engine: OrganizationEngine = Depends(get_organization_engine),
):
    """Remove all folders, assignments and pinned chats."""
    try:
        wipe_state(engine.store, confirm=req.confirm)
    except ConfirmationRequiredError as e:
        raise HTTPException(status_code=409, detail=str(e))

    engine.recent.invalidate()
    engine.refresh.request()
    return {"status": "wiped"}
