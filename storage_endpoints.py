from fastapi import APIRouter
import logging

from storage_drivers import get_storage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", tags=["Storage"])
async def storage_health():
    """
    Probe the configured storage driver.
    Always 200; `ok` carries the outcome.
    """
    driver = get_storage()
    try:
        result = driver.health()
    except Exception as e:
        logger.error(f"Storage health check error: {str(e)}")
        result = {"ok": False, "details": f"Health check failed: {str(e)}"}

    return {"ok": result["ok"], "driver": driver.name, "details": result["details"]}
