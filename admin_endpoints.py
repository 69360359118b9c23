from fastapi import APIRouter, Body, Depends, HTTPException, Request
from typing import Any, Dict
import logging

from account_deletion_service import AccountDeletionService, get_account_deletion_service
from auth_dependencies import AuthContext, require_admin_token, require_supabase_admin, require_user
from database import test_connection
from image_tracking_service import fetch_all_rows
from models import DeleteUserRequest
from responses import raise_for_result
from runtime_config import get_app_version, get_coming_soon, get_storage_driver_name, set_coming_soon
from settings_service import SettingsService, get_settings_service
from supabase_client import get_supabase_client

logger = logging.getLogger(__name__)
router = APIRouter()


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024
        if value < 1024 or unit == "TB":
            return f"{value:.2f} {unit}"


@router.get("/coming-soon", tags=["Admin"])
async def get_coming_soon_mode(auth: AuthContext = Depends(require_admin_token)):
    return {"enabled": get_coming_soon()}


@router.put("/coming-soon", tags=["Admin"])
async def set_coming_soon_mode(
    payload: Dict[str, Any] = Body(default_factory=dict),
    auth: AuthContext = Depends(require_admin_token),
    settings_service: SettingsService = Depends(get_settings_service),
):
    enabled = payload.get("enabled") if isinstance(payload, dict) else None
    if not isinstance(enabled, bool):
        raise HTTPException(status_code=400, detail="enabled must be a boolean value")

    set_coming_soon(enabled)
    await settings_service.persist_coming_soon(enabled)
    return {"enabled": get_coming_soon()}


@router.get("/health", tags=["Admin"])
async def admin_health(auth: AuthContext = Depends(require_admin_token)):
    """
    API version, database reachability with post count, and storage driver.
    """
    health = {
        "api": {"status": "ok", "version": get_app_version()},
        "db": {"status": "ok", "postsCount": None},
        "storage": {"driver": get_storage_driver_name()},
    }

    service_client = get_supabase_client().service_client
    try:
        if not service_client:
            raise RuntimeError("Supabase not configured")
        result = service_client.table("posts").select("id", count="exact").limit(1).execute()
        health["db"]["postsCount"] = result.count or 0
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        health["db"]["status"] = "down"

    health["directDb"] = {"status": "ok" if test_connection() else "down"}

    return health


@router.delete("/delete-user", tags=["Admin"])
async def delete_user(
    request: Request,
    payload: DeleteUserRequest,
    auth: AuthContext = Depends(require_user),
    deletion_service: AccountDeletionService = Depends(get_account_deletion_service),
):
    """
    Delete the caller's own account.
    """
    if payload.user_id != auth.user_id:
        logger.warning(f"User {auth.user_id} attempted to delete another account")
        raise HTTPException(status_code=403, detail="You can only delete your own account")

    result = await deletion_service.delete_user_account(
        auth.user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    raise_for_result(result)
    return {"success": True, "message": "Account deleted successfully"}


@router.get("/storage-usage", tags=["Admin"])
async def storage_usage(auth: AuthContext = Depends(require_supabase_admin)):
    """
    Database size from get_database_size() and uploaded image totals.
    """
    service_client = get_supabase_client().service_client
    if not service_client:
        raise HTTPException(status_code=503, detail="Database not configured")

    try:
        size = service_client.rpc("get_database_size").execute().data or {}
        if isinstance(size, list):
            size = size[0] if size else {}
        db_bytes = int(size.get("size_bytes") or 0)

        images = fetch_all_rows(lambda: service_client.table("images").select("id, file_size_bytes").order("id"))
        storage_bytes = sum(int(row.get("file_size_bytes") or 0) for row in images)
    except Exception as e:
        logger.error(f"Error fetching storage usage: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch storage stats")

    return {
        "ok": True,
        "stats": {
            "database": {"size_bytes": db_bytes, "size_formatted": format_bytes(db_bytes)},
            "storage": {
                "size_bytes": storage_bytes,
                "size_formatted": format_bytes(storage_bytes),
                "file_count": len(images),
            },
        },
    }
