"""
Image Service
Uploads to the post-images bucket, the images metadata table, and the
reference checks that protect images still used by posts.
"""
import secrets
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from auth_dependencies import AuthContext
from datetime_utils import utc_now_iso
from responses import list_body, paginate
from security_utils import sanitize_filename_hint, sanitize_for_log
from storage_drivers import MIME_EXTENSIONS
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

IMAGES_BUCKET = "post-images"

MAX_IMAGE_SIZE = 8 * 1024 * 1024  # 8MB
WARN_IMAGE_SIZE = 2 * 1024 * 1024  # 2MB
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

IMAGE_FIELDS = "id, owner_id, path, mime_type, file_size_bytes, width, height, is_public, alt_text, title, created_at, updated_at"


def validate_upload(data: Optional[bytes], mime_type: Optional[str], alt_text: Optional[str],
                    title: Optional[str]) -> Dict[str, List[str]]:
    """Field errors for a multipart image upload (empty dict when valid)"""
    fields: Dict[str, List[str]] = {}

    if not data:
        fields.setdefault("file", []).append("Image file is required")
    else:
        if (mime_type or "").lower() not in ALLOWED_IMAGE_TYPES:
            fields.setdefault("file", []).append(
                "Invalid file type. Allowed: image/jpeg, image/png, image/webp, image/gif"
            )
        if len(data) > MAX_IMAGE_SIZE:
            fields.setdefault("file", []).append("File too large. Maximum size is 8MB")

    if not alt_text or not alt_text.strip():
        fields.setdefault("alt_text", []).append("Alt text is required")
    elif len(alt_text.strip()) > 500:
        fields.setdefault("alt_text", []).append("Alt text must be 500 characters or less")

    if title and len(title.strip()) > 120:
        fields.setdefault("title", []).append("Title must be 120 characters or less")

    return fields


def build_image_path(owner_id: str, filename: Optional[str], mime_type: str,
                     now: Optional[datetime] = None) -> str:
    """{owner}/{yyyy}/{mm}/{name}-{timestamp}-{random}.{ext}"""
    now = now or datetime.now(timezone.utc)
    name = sanitize_filename_hint(filename) or "image"
    ext = MIME_EXTENSIONS.get(mime_type.lower(), "bin")
    stamp = int(now.timestamp() * 1000)
    return f"{owner_id}/{now:%Y}/{now:%m}/{name}-{stamp}-{secrets.token_hex(4)}.{ext}"


class ImageService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    def _unavailable(self) -> Optional[Dict]:
        if not self.supabase_client.is_configured():
            logger.error("Supabase service client not available for image operations")
            return {"success": False, "error": "Uploads not configured", "status_code": 503}
        return None

    def public_url(self, path: str) -> str:
        return self.supabase_client.service_client.storage.from_(IMAGES_BUCKET).get_public_url(path)

    def _with_url(self, row: Dict) -> Dict:
        image = {k: v for k, v in row.items() if k != "owner_id"}
        image["public_url"] = self.public_url(row["path"])
        return image

    def _fetch(self, image_id: str) -> Optional[Dict]:
        result = (
            self.supabase_client.service_client.table("images")
            .select(IMAGE_FIELDS)
            .eq("id", image_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def upload_image(self, data: bytes, filename: Optional[str], mime_type: str,
                           alt_text: str, title: Optional[str], owner_id: str) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        db = self.supabase_client.service_client
        mime_type = mime_type.lower()
        path = build_image_path(owner_id, filename, mime_type)
        bucket = db.storage.from_(IMAGES_BUCKET)

        try:
            bucket.upload(
                path,
                data,
                file_options={"content-type": mime_type, "cache-control": "3600", "upsert": "false"},
            )
        except Exception as e:
            logger.error(f"Storage upload failed for {path}: {str(e)}")
            return {"success": False, "error": "Failed to upload file", "status_code": 500}

        try:
            result = db.table("images").insert({
                "owner_id": owner_id,
                "path": path,
                "mime_type": mime_type,
                "file_size_bytes": len(data),
                "alt_text": alt_text.strip(),
                "title": (title or "").strip() or None,
                "is_public": True,
            }).execute()
        except Exception as e:
            logger.error(f"Image metadata insert failed, removing {path}: {str(e)}")
            try:
                bucket.remove([path])
            except Exception as cleanup_error:
                logger.warning(f"Could not remove orphaned upload {path}: {str(cleanup_error)}")
            return {"success": False, "error": "Failed to upload image", "status_code": 500}

        image = self._with_url(result.data[0])
        response = {"success": True, "data": image}
        if len(data) > WARN_IMAGE_SIZE:
            response["warning"] = (
                f"File size ({len(data) / 1024 / 1024:.1f}MB) is large. "
                "Consider optimizing for better performance."
            )
        return response

    async def record_metadata(self, payload: Dict[str, Any], owner_id: str) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        if payload["mime_type"].lower() not in ALLOWED_IMAGE_TYPES:
            return {
                "success": False,
                "error": f"Invalid MIME type. Allowed: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}",
                "status_code": 400,
            }

        try:
            result = self.supabase_client.service_client.table("images").insert({
                "owner_id": owner_id,
                "path": payload["path"],
                "mime_type": payload["mime_type"].lower(),
                "file_size_bytes": payload["file_size_bytes"],
                "width": payload.get("width"),
                "height": payload.get("height"),
                "alt_text": payload.get("alt_text"),
                "title": payload.get("title"),
                "is_public": bool(payload.get("is_public", True)),
            }).execute()
            return {"success": True, "data": self._with_url(result.data[0])}
        except Exception as e:
            logger.error(f"Error storing image metadata: {str(e)}")
            return {"success": False, "error": "Failed to store image metadata", "status_code": 500}

    async def list_user_images(self, owner_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        page, limit, start, end = paginate(page, limit, default_limit=50)
        try:
            result = (
                self.supabase_client.service_client.table("images")
                .select(IMAGE_FIELDS, count="exact")
                .eq("owner_id", owner_id)
                .order("created_at", desc=True)
                .range(start, end)
                .execute()
            )
            items = [self._with_url(row) for row in result.data or []]
            return {"success": True, "data": list_body(items, page, limit, result.count or 0)}
        except Exception as e:
            logger.error(f"Error listing images for {owner_id}: {str(e)}")
            return {"success": False, "error": "Failed to fetch images", "status_code": 500}

    async def get_image(self, image_id: str, auth: AuthContext) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        try:
            image = self._fetch(image_id)
        except Exception as e:
            logger.error(f"Error fetching image {sanitize_for_log(image_id)}: {str(e)}")
            return {"success": False, "error": "Failed to fetch image", "status_code": 500}

        # Private images are invisible to everyone but the owner and admins
        if not image or (not image.get("is_public") and not auth.owns(image.get("owner_id")) and not auth.is_admin):
            return {"success": False, "error": "Image not found", "status_code": 404}

        return {"success": True, "data": self._with_url(image)}

    async def update_image(self, image_id: str, auth: AuthContext, updates: Dict[str, Any]) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        image = self._fetch(image_id)
        if not image:
            return {"success": False, "error": "Image not found", "status_code": 404}
        if not auth.is_admin and not auth.owns(image.get("owner_id")):
            return {"success": False, "error": "Not authorized to update this image", "status_code": 403}

        if "alt_text" in updates and not updates["alt_text"]:
            return {"success": False, "fields": {"alt_text": ["Alt text is required"]}, "status_code": 422}

        changes = {"updated_at": utc_now_iso()}
        if updates.get("alt_text") is not None:
            changes["alt_text"] = updates["alt_text"]
        if "title" in updates:
            changes["title"] = (updates["title"] or "").strip() or None

        try:
            result = (
                self.supabase_client.service_client.table("images")
                .update(changes)
                .eq("id", image_id)
                .execute()
            )
            row = result.data[0] if result.data else {**image, **changes}
            return {"success": True, "data": self._with_url(row)}
        except Exception as e:
            logger.error(f"Error updating image {image_id}: {str(e)}")
            return {"success": False, "error": "Failed to update image", "status_code": 500}

    def find_references(self, path: str) -> List[Dict[str, Any]]:
        """Posts that use the image as cover or inside their content"""
        db = self.supabase_client.service_client
        url = self.public_url(path)
        references: Dict[str, Dict] = {}

        queries = [
            lambda: db.table("posts").select("id, title").eq("cover_image_url", url).limit(5),
            lambda: db.table("posts").select("id, title").ilike("content_html", f"%{path}%").limit(5),
        ]
        for build in queries:
            try:
                for post in build().execute().data or []:
                    references.setdefault(str(post["id"]), {"id": post["id"], "title": post.get("title")})
            except Exception as e:
                logger.warning(f"Reference lookup failed for {path}: {str(e)}")

        try:
            tracked = db.table("post_images").select("post_id").eq("image_url", url).limit(5).execute().data or []
            missing = [row["post_id"] for row in tracked if str(row["post_id"]) not in references]
            if missing:
                for post in db.table("posts").select("id, title").in_("id", missing).execute().data or []:
                    references.setdefault(str(post["id"]), {"id": post["id"], "title": post.get("title")})
        except Exception as e:
            logger.warning(f"post_images lookup failed for {path}: {str(e)}")

        return list(references.values())[:5]

    async def delete_image(self, image_id: str, auth: AuthContext) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        db = self.supabase_client.service_client
        image = self._fetch(image_id)
        if not image:
            return {"success": False, "error": "Image not found", "status_code": 404}
        if not auth.is_admin and not auth.owns(image.get("owner_id")):
            return {"success": False, "error": "Not authorized to delete this image", "status_code": 403}

        references = self.find_references(image["path"])
        if references:
            return {
                "success": False,
                "error": "Cannot delete image: it is being used by one or more posts",
                "status_code": 409,
                "references": references,
            }

        try:
            db.storage.from_(IMAGES_BUCKET).remove([image["path"]])
        except Exception as e:
            # The row still goes; an orphaned blob is harmless
            logger.warning(f"Storage removal failed for {image['path']}: {str(e)}")

        try:
            db.table("images").delete().eq("id", image_id).execute()
        except Exception as e:
            logger.error(f"Error deleting image {image_id}: {str(e)}")
            return {"success": False, "error": "Failed to delete image", "status_code": 500}

        logger.info(f"Deleted image {image_id} ({image['path']})")
        return {"success": True}


async def get_image_service() -> ImageService:
    """
    Dependency to get ImageService instance.
    """
    return ImageService(get_supabase_client())
