from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy.orm import Session
from typing import Optional
import logging

from auth_dependencies import AuthContext, require_admin_or_user, require_supabase_admin, require_user
from compression_service import (
    CompressionError,
    CompressionSettingsService,
    compress_image,
    format_compression_stats,
    image_dimensions,
    quality_from_settings,
    should_compress,
)
from database import get_db
from image_library_service import LibraryUnavailableError, get_image_library_service
from image_service import MAX_IMAGE_SIZE, ImageService, get_image_service, validate_upload
from image_tracking_service import get_image_tracking_service
from models import DeduplicateRequest, ImageMetadataRequest, UpdateImageRequest, model_dump_set
from rate_limits import limiter
from responses import raise_for_result, validation_body, warning_body
from storage_drivers import StorageError, get_storage, validate_image

logger = logging.getLogger(__name__)
router = APIRouter()


def _owner_for(auth: AuthContext, owner_id: Optional[str]) -> str:
    """Admin-token callers act on behalf of an explicit owner"""
    if auth.via_admin_token:
        if not owner_id:
            raise HTTPException(
                status_code=422,
                detail=validation_body({"owner_id": ["owner_id is required when using the admin token"]}),
            )
        return owner_id
    return auth.user_id


def _tracking_call(action: str, fn, *args):
    try:
        return fn(*args)
    except RuntimeError as e:
        logger.error(f"Image tracking unavailable during {action}: {str(e)}")
        raise HTTPException(status_code=503, detail="Database not configured")
    except Exception as e:
        logger.error(f"Image tracking {action} failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to {action}")


@router.post("/", status_code=201, tags=["Images"])
@limiter.limit("20/minute")
async def upload_image(
    request: Request,
    file: Optional[UploadFile] = File(None),
    alt_text: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    owner_id: Optional[str] = Form(None),
    auth: AuthContext = Depends(require_admin_or_user),
    image_service: ImageService = Depends(get_image_service),
):
    """
    Upload an image to the post-images bucket and record its metadata.
    Files over 2MB are accepted with a warning.
    """
    data = await file.read() if file else None
    if data and len(data) > MAX_IMAGE_SIZE:
        raise HTTPException(status_code=413, detail="File too large. Maximum size is 8MB")

    fields = validate_upload(data, file.content_type if file else None, alt_text, title)
    if fields:
        raise HTTPException(status_code=422, detail=validation_body(fields))

    owner = _owner_for(auth, owner_id)
    result = await image_service.upload_image(
        data, file.filename, file.content_type, alt_text, title, owner
    )
    raise_for_result(result)

    if result.get("warning"):
        return warning_body("image", result["data"], result["warning"])
    return {"image": result["data"]}


@router.post("/uploads/image", tags=["Images"])
@limiter.limit("20/minute")
async def upload_to_storage(
    request: Request,
    file: UploadFile = File(...),
    filename_hint: Optional[str] = Form(None),
    compress: Optional[bool] = Query(None),
    quality: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_admin_or_user),
    db: Session = Depends(get_db),
):
    """
    Store an image through the configured storage driver.

    Compression follows the saved settings unless `compress` is given.
    """
    data = await file.read()
    try:
        mime = validate_image(data, file.content_type)
    except StorageError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    settings_service = CompressionSettingsService(db)
    settings = settings_service.get_settings()
    try:
        width, height = image_dimensions(data) or (None, None)
    except CompressionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if compress is None:
        compress = (
            settings["compression_enabled"]
            and settings["auto_compress"]
            and should_compress(len(data), width, height, settings)
        )

    compressed = None
    if compress and mime != "image/gif":
        output_format = mime.split("/")[1] if settings["always_preserve_format"] else None
        try:
            compressed = compress_image(
                data,
                quality=quality or quality_from_settings(settings),
                output_format=output_format,
                convert_photos_to_webp=settings["convert_photos_to_webp"],
                preserve_png_for_graphics=settings["preserve_png_for_graphics"],
            )
        except CompressionError as e:
            raise HTTPException(status_code=e.status_code, detail=e.message)

        if compressed["compressed_size"] < len(data):
            data = compressed["buffer"]
            mime = compressed["mime_type"]
            width, height = compressed["width"], compressed["height"]
            logger.info(format_compression_stats(compressed))
        else:
            compressed = None

    hint = filename_hint or (file.filename.rsplit(".", 1)[0] if file.filename else None)
    try:
        stored = get_storage().put_image(data, mime, hint)
    except StorageError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    response = {"url": stored["url"], "path": stored["path"], "width": width, "height": height}
    if compressed:
        settings_service.record_metadata(stored["path"], compressed, str(quality or settings["quality_preset"]))
        response["compression"] = {
            "originalSize": compressed["original_size"],
            "compressedSize": compressed["compressed_size"],
            "compressionRatio": compressed["compression_ratio"],
            "format": compressed["format"],
            "compressionStats": format_compression_stats(compressed),
        }
    return response


@router.post("/metadata", status_code=201, tags=["Images"])
async def record_image_metadata(
    payload: ImageMetadataRequest,
    auth: AuthContext = Depends(require_admin_or_user),
    image_service: ImageService = Depends(get_image_service),
):
    owner = _owner_for(auth, payload.owner_id)
    result = await image_service.record_metadata(payload.model_dump(), owner)
    raise_for_result(result)
    return {"image": result["data"]}


@router.get("/", tags=["Images"])
async def list_images(
    page: int = Query(1),
    limit: int = Query(50),
    auth: AuthContext = Depends(require_user),
    image_service: ImageService = Depends(get_image_service),
):
    result = await image_service.list_user_images(auth.user_id, page=page, limit=limit)
    raise_for_result(result)
    return result["data"]


@router.get("/library", tags=["Images"])
async def image_library(auth: AuthContext = Depends(require_supabase_admin)):
    """
    Every image known to the site: uploads, post covers, inline images
    and page wallpapers.
    """
    try:
        return get_image_library_service().list_library()
    except LibraryUnavailableError as e:
        logger.error(f"Image library unavailable: {str(e)}")
        raise HTTPException(
            status_code=503,
            detail={"error": "Image library unavailable", "details": str(e)},
        )


@router.post("/reconcile", tags=["Images"])
async def reconcile_images(auth: AuthContext = Depends(require_supabase_admin)):
    service = get_image_tracking_service()
    stats = _tracking_call("reconcile images", service.reconcile_all)
    return {"success": True, "stats": stats}


@router.get("/reconcile/status", tags=["Images"])
async def reconciliation_status(auth: AuthContext = Depends(require_supabase_admin)):
    service = get_image_tracking_service()
    return _tracking_call("fetch reconciliation status", service.get_reconciliation_status)


@router.get("/duplicates", tags=["Images"])
async def find_duplicate_images(auth: AuthContext = Depends(require_supabase_admin)):
    service = get_image_tracking_service()
    return _tracking_call("find duplicates", service.find_duplicates)


@router.post("/deduplicate", tags=["Images"])
async def deduplicate_images(
    payload: Optional[DeduplicateRequest] = None,
    auth: AuthContext = Depends(require_supabase_admin),
):
    dry_run = payload.dryRun if payload else False
    service = get_image_tracking_service()
    return _tracking_call("deduplicate images", service.deduplicate, dry_run)


@router.get("/stats", tags=["Images"])
async def post_image_stats(
    post_id: str = Query(...),
    auth: AuthContext = Depends(require_supabase_admin),
):
    service = get_image_tracking_service()
    return _tracking_call("fetch image stats", service.get_post_image_stats, post_id)


@router.get("/usage", tags=["Images"])
async def image_usage(auth: AuthContext = Depends(require_supabase_admin)):
    service = get_image_tracking_service()
    usage = _tracking_call("fetch image usage", service.get_image_usage_stats)
    return {"items": usage, "total": len(usage)}


@router.get("/{image_id}", tags=["Images"])
async def get_image(
    image_id: str,
    auth: AuthContext = Depends(require_user),
    image_service: ImageService = Depends(get_image_service),
):
    result = await image_service.get_image(image_id, auth)
    raise_for_result(result)
    return {"image": result["data"]}


@router.put("/{image_id}", tags=["Images"])
async def update_image(
    image_id: str,
    payload: UpdateImageRequest,
    auth: AuthContext = Depends(require_admin_or_user),
    image_service: ImageService = Depends(get_image_service),
):
    result = await image_service.update_image(image_id, auth, model_dump_set(payload))
    raise_for_result(result)
    return {"image": result["data"]}


@router.delete("/{image_id}", tags=["Images"])
async def delete_image(
    image_id: str,
    auth: AuthContext = Depends(require_admin_or_user),
    image_service: ImageService = Depends(get_image_service),
):
    result = await image_service.delete_image(image_id, auth)
    raise_for_result(result)
    return {"deleted": True}
