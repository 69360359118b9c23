from fastapi import APIRouter, Depends, HTTPException
import logging

from auth_dependencies import AuthContext, require_supabase_admin
from layout_service import LayoutError, LayoutService, get_layout_service
from models import (
    RenameLayoutSlotRequest,
    SaveLayoutSlotRequest,
    UniversalWallpaperRequest,
    WallpaperRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


async def _run(action: str, call):
    try:
        return await call
    except LayoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error during {action}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to {action}")


# Public


@router.get("/wallpapers", tags=["Layouts"])
async def all_wallpapers(layout_service: LayoutService = Depends(get_layout_service)):
    return await _run("load wallpapers", layout_service.all_wallpapers())


@router.get("/wallpapers/universal", tags=["Layouts"])
async def universal_wallpaper(layout_service: LayoutService = Depends(get_layout_service)):
    return {"universal": await _run("load universal wallpaper", layout_service.get_universal())}


@router.get("/{page_id}/published", tags=["Layouts"])
async def published_layout(page_id: str, layout_service: LayoutService = Depends(get_layout_service)):
    return {"layout": await _run("load published layout", layout_service.get_published(page_id))}


@router.get("/{page_id}/wallpaper", tags=["Layouts"])
async def page_wallpaper(page_id: str, layout_service: LayoutService = Depends(get_layout_service)):
    return {"wallpaper": await _run("load page wallpaper", layout_service.get_page_wallpaper(page_id))}


# Admin


@router.put("/wallpapers/universal", tags=["Layouts"])
async def set_universal_wallpaper(
    payload: UniversalWallpaperRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    previous = await _run("set universal wallpaper", layout_service.set_universal(payload.page_id))
    return {"pageId": payload.page_id, "previousPageId": previous}


@router.delete("/wallpapers/universal", tags=["Layouts"])
async def clear_universal_wallpaper(
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    cleared = await _run("clear universal wallpaper", layout_service.clear_universal())
    return {"cleared": cleared}


@router.get("/{page_id}", tags=["Layouts"])
async def list_layout_slots(
    page_id: str,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    return {"items": await _run("load layout slots", layout_service.list_slots(page_id))}


@router.get("/{page_id}/next-slot", tags=["Layouts"])
async def next_slot(
    page_id: str,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    return {"slot_number": await _run("get next slot number", layout_service.next_slot_number(page_id))}


@router.get("/{page_id}/slots/{slot_number}", tags=["Layouts"])
async def get_layout_slot(
    page_id: str,
    slot_number: int,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    return {"layout": await _run("load layout slot", layout_service.get_slot(page_id, slot_number))}


@router.put("/{page_id}/slots/{slot_number}", tags=["Layouts"])
async def save_layout_slot(
    page_id: str,
    slot_number: int,
    payload: SaveLayoutSlotRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    slot = await _run(
        "save layout slot",
        layout_service.save_slot(
            page_id,
            slot_number,
            payload.name,
            [card.model_dump() for card in payload.cards],
            payload.settings.model_dump(),
        ),
    )
    return {"layout": slot}


@router.patch("/{page_id}/slots/{slot_number}", tags=["Layouts"])
async def rename_layout_slot(
    page_id: str,
    slot_number: int,
    payload: RenameLayoutSlotRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    return {"layout": await _run("rename layout slot", layout_service.rename_slot(page_id, slot_number, payload.name))}


@router.post("/{page_id}/slots/{slot_number}/publish", tags=["Layouts"])
async def publish_layout_slot(
    page_id: str,
    slot_number: int,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    return {"layout": await _run("publish layout slot", layout_service.publish_slot(page_id, slot_number))}


@router.delete("/{page_id}/slots/{slot_number}", tags=["Layouts"])
async def delete_layout_slot(
    page_id: str,
    slot_number: int,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    await _run("delete layout slot", layout_service.delete_slot(page_id, slot_number))
    return {"deleted": True}


@router.put("/{page_id}/wallpaper", tags=["Layouts"])
async def set_page_wallpaper(
    page_id: str,
    payload: WallpaperRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    wallpaper = await _run("save page wallpaper", layout_service.set_page_wallpaper(page_id, payload.model_dump()))
    return {"wallpaper": wallpaper}


@router.delete("/{page_id}/wallpaper", tags=["Layouts"])
async def remove_page_wallpaper(
    page_id: str,
    auth: AuthContext = Depends(require_supabase_admin),
    layout_service: LayoutService = Depends(get_layout_service),
):
    removed = await _run("remove page wallpaper", layout_service.remove_page_wallpaper(page_id))
    return {"removed": removed}
