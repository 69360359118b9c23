from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import logging

from datetime_utils import utc_now_iso
from rate_limits import limiter
from supabase_client import get_supabase_client

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/db-ping", tags=["Auth"])
@limiter.limit("30/minute")
async def db_ping(request: Request):
    """
    Check the Supabase database is reachable.
    """
    try:
        service_client = get_supabase_client().service_client
        if not service_client:
            raise RuntimeError("Supabase not configured")
        service_client.table("profiles").select("id").limit(1).execute()
    except Exception as e:
        logger.error(f"Database ping failed: {str(e)}")
        return JSONResponse(status_code=500, content={"ok": False, "error": "Database connection failed"})

    return {"ok": True, "message": "Database connection successful", "timestamp": utc_now_iso()}
