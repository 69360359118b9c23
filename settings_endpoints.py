from fastapi import APIRouter, Depends, HTTPException
import logging

from auth_dependencies import AuthContext, require_supabase_admin
from models import NavbarLabelRequest
from settings_service import NavbarError, SettingsService, get_settings_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/navbar", tags=["Settings"])
async def get_navbar(settings_service: SettingsService = Depends(get_settings_service)):
    return {"items": await settings_service.get_navbar_items()}


@router.post("/navbar/{item_id}/toggle", tags=["Settings"])
async def toggle_navbar_item(
    item_id: str,
    auth: AuthContext = Depends(require_supabase_admin),
    settings_service: SettingsService = Depends(get_settings_service),
):
    try:
        return {"items": await settings_service.toggle_navbar_item(item_id)}
    except NavbarError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/navbar/{item_id}/label", tags=["Settings"])
async def update_navbar_label(
    item_id: str,
    payload: NavbarLabelRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    settings_service: SettingsService = Depends(get_settings_service),
):
    try:
        return {"items": await settings_service.update_navbar_label(item_id, payload.label)}
    except NavbarError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
