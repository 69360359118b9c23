"""
Image Compression Service
Resizes and re-encodes uploaded images with Pillow, and stores the global
compression settings in the direct database.
"""
import logging
from io import BytesIO
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import requests
from PIL import Image, ImageOps, UnidentifiedImageError
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import CompressionSettings, ImageMetadata

logger = logging.getLogger(__name__)

QUALITY_PRESETS = {
    "high": 85,
    "balanced": 75,
    "aggressive": 60,
}
VALID_PRESETS = set(QUALITY_PRESETS) | {"custom"}

DEFAULT_MAX_DIMENSION = 2000
DOWNLOAD_TIMEOUT = 15
MAX_DOWNLOAD_SIZE = 20 * 1024 * 1024  # 20MB

FORMAT_MIME = {
    "webp": "image/webp",
    "jpeg": "image/jpeg",
    "png": "image/png",
}

DEFAULT_SETTINGS = {
    "compression_enabled": True,
    "auto_compress": True,
    "size_threshold_kb": 500,
    "dimension_threshold_px": 2000,
    "quality_preset": "balanced",
    "custom_quality": 75,
    "convert_photos_to_webp": True,
    "preserve_png_for_graphics": True,
    "always_preserve_format": False,
    "enable_legacy_compression": True,
}


class CompressionError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def resolve_quality(quality: Union[str, int, float, None]) -> int:
    """Preset name or number -> encoder quality in 10..100"""
    if quality is None:
        return QUALITY_PRESETS["balanced"]
    if isinstance(quality, bool):
        raise CompressionError("Invalid quality value", status_code=400)
    if isinstance(quality, (int, float)):
        return max(10, min(100, int(quality)))

    value = str(quality).strip().lower()
    if value.isdigit():
        return max(10, min(100, int(value)))
    return QUALITY_PRESETS.get(value, QUALITY_PRESETS["balanced"])


def quality_from_settings(settings: Dict[str, Any]) -> int:
    if settings.get("quality_preset") == "custom":
        return resolve_quality(settings.get("custom_quality"))
    return resolve_quality(settings.get("quality_preset"))


def _has_alpha(image: Image.Image) -> bool:
    if "A" in image.getbands():
        return True
    return image.mode == "P" and "transparency" in image.info


def determine_output_format(
    image: Image.Image,
    requested: Optional[str] = None,
    convert_photos_to_webp: bool = True,
    preserve_png_for_graphics: bool = True,
) -> str:
    if requested and requested != "auto":
        requested = requested.lower()
        if requested == "jpg":
            requested = "jpeg"
        if requested not in FORMAT_MIME:
            raise CompressionError(f"Unsupported output format: {requested}", status_code=400)
        return requested

    source_format = (image.format or "").lower()

    # Graphics with transparency stay PNG
    if preserve_png_for_graphics and source_format == "png" and _has_alpha(image):
        return "png"

    if convert_photos_to_webp:
        width, height = image.size
        if source_format in ("jpeg", "jpg"):
            return "webp"
        if source_format == "png" and not _has_alpha(image) and width * height > 100000:
            return "webp"

    if source_format in ("png", "webp"):
        return source_format
    return "jpeg"


def compress_image(
    data: bytes,
    quality: Union[str, int, None] = "balanced",
    max_width: Optional[int] = DEFAULT_MAX_DIMENSION,
    max_height: Optional[int] = DEFAULT_MAX_DIMENSION,
    output_format: Optional[str] = None,
    convert_photos_to_webp: bool = True,
    preserve_png_for_graphics: bool = True,
) -> Dict[str, Any]:
    """
    Compress an image buffer.

    Returns buffer, format, mime_type, width, height, original_size,
    compressed_size and compression_ratio (percent saved, rounded).
    """
    if not data:
        raise CompressionError("Image data is empty", status_code=400)

    original_size = len(data)
    encoder_quality = resolve_quality(quality)

    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Image.DecompressionBombError as e:
        raise CompressionError(f"Image is too large to process: {str(e)}", status_code=413)
    except (UnidentifiedImageError, OSError) as e:
        raise CompressionError(f"Not a valid image: {str(e)}", status_code=400)

    target_format = determine_output_format(
        image,
        requested=output_format,
        convert_photos_to_webp=convert_photos_to_webp,
        preserve_png_for_graphics=preserve_png_for_graphics,
    )

    # Apply EXIF orientation before resizing; format is lost by transpose
    processed = ImageOps.exif_transpose(image)

    if max_width or max_height:
        bound = (max_width or processed.width, max_height or processed.height)
        if processed.width > bound[0] or processed.height > bound[1]:
            processed.thumbnail(bound, Image.Resampling.LANCZOS)

    output = BytesIO()
    if target_format == "jpeg":
        if processed.mode not in ("RGB", "L"):
            processed = processed.convert("RGB")
        processed.save(output, format="JPEG", quality=encoder_quality, optimize=True, progressive=True)
    elif target_format == "webp":
        if processed.mode not in ("RGB", "RGBA"):
            processed = processed.convert("RGBA" if _has_alpha(processed) else "RGB")
        processed.save(output, format="WEBP", quality=encoder_quality, method=6)
    else:
        processed.save(output, format="PNG", optimize=True, compress_level=9)

    buffer = output.getvalue()
    compressed_size = len(buffer)

    return {
        "buffer": buffer,
        "format": target_format,
        "mime_type": FORMAT_MIME[target_format],
        "width": processed.width,
        "height": processed.height,
        "original_size": original_size,
        "compressed_size": compressed_size,
        "compression_ratio": round((1 - compressed_size / original_size) * 100),
    }


def image_dimensions(data: bytes) -> Optional[tuple]:
    """(width, height), or None when Pillow cannot read the data"""
    try:
        with Image.open(BytesIO(data)) as image:
            return image.size
    except Image.DecompressionBombError as e:
        raise CompressionError(f"Image is too large to process: {str(e)}", status_code=413)
    except (UnidentifiedImageError, OSError):
        return None


def should_compress(size_bytes: int, width: Optional[int], height: Optional[int], settings: Dict[str, Any]) -> bool:
    size_kb = size_bytes / 1024
    max_dimension = max(width or 0, height or 0)
    return (
        size_kb > settings.get("size_threshold_kb", DEFAULT_SETTINGS["size_threshold_kb"])
        or max_dimension > settings.get("dimension_threshold_px", DEFAULT_SETTINGS["dimension_threshold_px"])
    )


def format_compression_stats(result: Dict[str, Any]) -> str:
    original_mb = result["original_size"] / (1024 * 1024)
    compressed_mb = result["compressed_size"] / (1024 * 1024)
    return (
        f"Compressed from {original_mb:.2f}MB to {compressed_mb:.2f}MB "
        f"({result['compression_ratio']}% reduction)"
    )


def is_http_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def compress_from_url(url: str, **options) -> Dict[str, Any]:
    """Download an image and compress it"""
    if not is_http_url(url):
        raise CompressionError("Invalid URL format", status_code=400)

    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
    except requests.exceptions.RequestException as e:
        raise CompressionError(f"Failed to download image: {str(e)}", status_code=502)

    if response.status_code != 200:
        raise CompressionError(f"Failed to download image: HTTP {response.status_code}", status_code=502)

    data = response.content
    if len(data) > MAX_DOWNLOAD_SIZE:
        raise CompressionError("Downloaded image is too large", status_code=413)

    result = compress_image(data, **options)
    result["original_url"] = url
    return result


class CompressionSettingsService:
    """Global (user_id IS NULL) compression settings row"""

    def __init__(self, db: Session):
        self.db = db

    def _current_row(self) -> Optional[CompressionSettings]:
        return (
            self.db.query(CompressionSettings)
            .filter(CompressionSettings.user_id.is_(None))
            .order_by(CompressionSettings.created_at.desc(), CompressionSettings.id.desc())
            .first()
        )

    def get_settings(self) -> Dict[str, Any]:
        row = self._current_row()
        if row is None:
            return dict(DEFAULT_SETTINGS)
        return row.to_dict()

    def update_settings(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        updates = {k: v for k, v in updates.items() if k in DEFAULT_SETTINGS and v is not None}

        preset = updates.get("quality_preset")
        if preset is not None and preset not in VALID_PRESETS:
            raise CompressionError(
                "quality_preset must be one of: high, balanced, aggressive, custom",
                status_code=400,
            )

        custom_quality = updates.get("custom_quality")
        if custom_quality is not None and not 10 <= custom_quality <= 100:
            raise CompressionError("custom_quality must be between 10 and 100", status_code=400)

        row = self._current_row()
        if row is None:
            row = CompressionSettings(**DEFAULT_SETTINGS)
            self.db.add(row)

        for key, value in updates.items():
            setattr(row, key, value)

        self.db.commit()
        self.db.refresh(row)
        logger.info(f"Compression settings updated: {sorted(updates)}")
        return row.to_dict()

    def record_metadata(self, path: str, result: Dict[str, Any], quality_label: str) -> None:
        """Store image_metadata for a compressed upload; failures are logged only"""
        try:
            self.db.add(ImageMetadata(
                path=path,
                mime_type=result["mime_type"],
                file_size_bytes=result["compressed_size"],
                width=result.get("width"),
                height=result.get("height"),
                is_public=True,
                is_compressed=True,
                original_size_bytes=result["original_size"],
                compressed_size_bytes=result["compressed_size"],
                compression_ratio=result["compression_ratio"],
                compression_quality=quality_label,
                original_format=result.get("original_url") or result.get("original_format"),
            ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Could not store image metadata for {path}: {str(e)}")

    def get_stats(self) -> Dict[str, Any]:
        compressed = ImageMetadata.is_compressed.is_(True)
        total_images = (
            self.db.query(func.count(ImageMetadata.id))
            .filter(ImageMetadata.is_public.is_(True))
            .scalar()
        ) or 0
        compressed_images, total_original, total_compressed, avg_ratio = (
            self.db.query(
                func.count(ImageMetadata.id),
                func.coalesce(func.sum(ImageMetadata.original_size_bytes), 0),
                func.coalesce(func.sum(ImageMetadata.compressed_size_bytes), 0),
                func.avg(ImageMetadata.compression_ratio),
            )
            .filter(ImageMetadata.is_public.is_(True), compressed)
            .one()
        )

        return {
            "totalImages": int(total_images),
            "compressedImages": int(compressed_images or 0),
            "totalOriginalSize": int(total_original or 0),
            "totalCompressedSize": int(total_compressed or 0),
            "totalSavings": int((total_original or 0) - (total_compressed or 0)),
            "averageCompressionRatio": round(float(avg_ratio or 0)),
        }
