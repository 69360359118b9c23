from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import asyncio
import logging

from auth_dependencies import AuthContext, require_admin_token
from compression_service import (
    CompressionError,
    CompressionSettingsService,
    compress_from_url,
    format_compression_stats,
    is_http_url,
    quality_from_settings,
)
from database import get_db
from models import CompressionSettingsUpdate, CompressUrlRequest, model_dump_set
from rate_limits import limiter
from storage_drivers import StorageError, get_storage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/settings", tags=["Compression"])
async def get_compression_settings(
    auth: AuthContext = Depends(require_admin_token),
    db: Session = Depends(get_db),
):
    try:
        return CompressionSettingsService(db).get_settings()
    except Exception as e:
        logger.error(f"Error fetching compression settings: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch compression settings")


@router.patch("/settings", tags=["Compression"])
async def update_compression_settings(
    payload: CompressionSettingsUpdate,
    auth: AuthContext = Depends(require_admin_token),
    db: Session = Depends(get_db),
):
    try:
        return CompressionSettingsService(db).update_settings(model_dump_set(payload))
    except CompressionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating compression settings: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update compression settings")


@router.post("/compress-url", tags=["Compression"])
@limiter.limit("10/minute")
async def compress_url(
    request: Request,
    payload: CompressUrlRequest,
    auth: AuthContext = Depends(require_admin_token),
    db: Session = Depends(get_db),
):
    """
    Download an image, compress it with the saved settings and store the
    result through the storage driver.
    """
    if not payload.url:
        raise HTTPException(status_code=400, detail="URL is required")
    if not is_http_url(payload.url):
        raise HTTPException(status_code=400, detail="Invalid URL format")

    settings_service = CompressionSettingsService(db)
    settings = settings_service.get_settings()
    if not settings["compression_enabled"]:
        raise HTTPException(
            status_code=400,
            detail="Compression is disabled. Please enable compression in settings.",
        )

    quality = payload.quality if payload.quality is not None else quality_from_settings(settings)
    try:
        result = await asyncio.to_thread(
            compress_from_url,
            payload.url,
            quality=quality,
            output_format=payload.format or "auto",
            convert_photos_to_webp=settings["convert_photos_to_webp"],
            preserve_png_for_graphics=settings["preserve_png_for_graphics"],
        )
        stored = get_storage().put_image(result["buffer"], result["mime_type"], f"compressed.{result['format']}")
    except (CompressionError, StorageError) as e:
        logger.warning(f"Compress-url failed for {payload.url}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    settings_service.record_metadata(stored["path"], result, str(quality))

    return {
        "url": stored["url"],
        "path": stored["path"],
        "width": result["width"],
        "height": result["height"],
        "originalSize": result["original_size"],
        "compressedSize": result["compressed_size"],
        "compressionRatio": result["compression_ratio"],
        "format": result["format"],
        "compressionStats": format_compression_stats(result),
    }


@router.get("/stats", tags=["Compression"])
async def compression_stats(
    auth: AuthContext = Depends(require_admin_token),
    db: Session = Depends(get_db),
):
    try:
        return CompressionSettingsService(db).get_stats()
    except Exception as e:
        logger.error(f"Error fetching compression stats: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch compression statistics")
