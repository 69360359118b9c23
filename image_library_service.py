"""
Image library listing for the dashboard.

Three ways to build the list, tried in order:
  optimized        - post_images table via Supabase
  content_parsing  - scan every post's content_rich via Supabase
  direct_postgres  - scan posts through the direct database connection
"""
import logging
from typing import Any, Dict, List, Optional

from database import fetch_posts_for_images
from image_tracking_service import extract_post_images, fetch_all_rows
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

MODE_OPTIMIZED = "optimized"
MODE_CONTENT_PARSING = "content_parsing"
MODE_DIRECT_POSTGRES = "direct_postgres"

SOURCES = ("upload", "post_cover", "post_inline", "wallpaper")


class LibraryUnavailableError(Exception):
    pass


class ImageLibraryService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    def list_library(self) -> Dict[str, Any]:
        attempts = []
        if self.supabase_client.is_configured():
            attempts.append((MODE_OPTIMIZED, self._optimized))
            attempts.append((MODE_CONTENT_PARSING, self._content_parsing))
        else:
            logger.warning("Supabase not configured, listing images from direct database")
        attempts.append((MODE_DIRECT_POSTGRES, self._direct_postgres))

        errors = []
        for mode, build in attempts:
            try:
                images = build()
            except Exception as e:
                logger.warning(f"Image library mode {mode} failed: {str(e)}")
                errors.append(f"{mode}: {str(e)}")
                continue

            images = _dedupe(images)
            return {
                "images": images,
                "processing_mode": mode,
                "stats": _stats(images),
            }

        raise LibraryUnavailableError("; ".join(errors))

    # Modes

    def _optimized(self) -> List[Dict]:
        db = self.supabase_client.service_client
        rows = fetch_all_rows(
            lambda: db.table("post_images")
            .select("id, post_id, image_url, image_type, alt_text, width, height, created_at")
            .order("created_at", desc=True)
        )
        if not rows:
            total_posts = db.table("posts").select("id", count="exact").limit(1).execute().count or 0
            if total_posts:
                # Not reconciled yet, the table would hide every post image
                raise LookupError(f"post_images is empty while {total_posts} posts exist")
        posts = self._post_lookup({str(r["post_id"]) for r in rows})

        images = []
        for row in rows:
            post = posts.get(str(row["post_id"]), {})
            images.append(_post_image(
                row["image_url"],
                row["image_type"],
                post_id=str(row["post_id"]),
                post=post,
                alt_text=row.get("alt_text"),
                width=row.get("width"),
                height=row.get("height"),
                created_at=row.get("created_at"),
                image_id=row.get("id"),
            ))
        return self._uploads() + images + self._wallpapers()

    def _content_parsing(self) -> List[Dict]:
        db = self.supabase_client.service_client
        posts = fetch_all_rows(
            lambda: db.table("posts")
            .select("id, title, slug, cover_image_url, content_rich, created_at")
            .order("created_at", desc=True)
        )
        return self._uploads() + _images_from_posts(posts) + self._wallpapers()

    def _direct_postgres(self) -> List[Dict]:
        return _images_from_posts(fetch_posts_for_images())

    # Shared pieces

    def _post_lookup(self, post_ids) -> Dict[str, Dict]:
        if not post_ids:
            return {}
        db = self.supabase_client.service_client
        rows = db.table("posts").select("id, title, slug").in_("id", sorted(post_ids)).execute().data or []
        return {str(r["id"]): r for r in rows}

    def _uploads(self) -> List[Dict]:
        db = self.supabase_client.service_client
        try:
            rows = fetch_all_rows(
                lambda: db.table("images").select("*").order("created_at", desc=True)
            )
        except Exception as e:
            logger.warning(f"Could not list uploaded images: {str(e)}")
            return []

        storage_url = None
        images = []
        for row in rows:
            url = row.get("public_url") or row.get("url")
            if not url and row.get("path"):
                if storage_url is None:
                    storage_url = db.storage.from_("post-images")
                url = storage_url.get_public_url(row["path"])
            if not url:
                continue
            images.append({
                "id": row.get("id"),
                "url": url,
                "source": "upload",
                "alt_text": row.get("alt_text"),
                "title": row.get("title"),
                "path": row.get("path"),
                "mime_type": row.get("mime_type"),
                "file_size_bytes": row.get("file_size_bytes"),
                "width": row.get("width"),
                "height": row.get("height"),
                "created_at": row.get("created_at"),
                "used_in": [],
            })
        return images

    def _wallpapers(self) -> List[Dict]:
        db = self.supabase_client.service_client
        try:
            rows = (
                db.table("page_layouts")
                .select("page_id, slot_number, wallpaper, is_universal_wallpaper, updated_at")
                .order("page_id")
                .execute()
                .data
                or []
            )
        except Exception as e:
            logger.warning(f"Could not list page wallpapers: {str(e)}")
            return []

        images = []
        for row in rows:
            wallpaper = row.get("wallpaper")
            if not isinstance(wallpaper, dict) or not wallpaper.get("url"):
                continue
            images.append({
                "id": f"wallpaper-{row['page_id']}",
                "url": wallpaper["url"],
                "source": "wallpaper",
                "alt_text": None,
                "title": f"{row['page_id']} wallpaper",
                "page_id": row["page_id"],
                "blur": wallpaper.get("blur", 0),
                "is_universal": bool(row.get("is_universal_wallpaper")),
                "created_at": row.get("updated_at"),
                "used_in": [{"page_id": row["page_id"]}],
            })
        return images


def _post_image(url: str, image_type: str, post_id: str, post: Dict, alt_text=None,
                width=None, height=None, created_at=None, image_id: Optional[str] = None) -> Dict:
    source = "post_cover" if image_type == "cover" else "post_inline"
    return {
        "id": image_id or f"{source}-{post_id}-{url}",
        "url": url,
        "source": source,
        "alt_text": alt_text,
        "title": post.get("title"),
        "width": width,
        "height": height,
        "created_at": created_at or post.get("created_at"),
        "used_in": [{
            "post_id": post_id,
            "post_title": post.get("title"),
            "post_slug": post.get("slug"),
        }],
    }


def _images_from_posts(posts: List[Dict]) -> List[Dict]:
    images = []
    for post in posts:
        post_id = str(post["id"])
        for ref in extract_post_images(post.get("content_rich"), post.get("cover_image_url")):
            images.append(_post_image(
                ref["image_url"],
                ref["image_type"],
                post_id=post_id,
                post=post,
                alt_text=ref.get("alt_text"),
                width=ref.get("width"),
                height=ref.get("height"),
            ))
    return images


def _dedupe(images: List[Dict]) -> List[Dict]:
    """One entry per URL; later sightings add to used_in"""
    by_url: Dict[str, Dict] = {}
    for image in images:
        existing = by_url.get(image["url"])
        if existing is None:
            by_url[image["url"]] = image
            continue
        for usage in image.get("used_in", []):
            if usage not in existing["used_in"]:
                existing["used_in"].append(usage)
    return list(by_url.values())


def _stats(images: List[Dict]) -> Dict[str, int]:
    stats = {"total": len(images)}
    for source in SOURCES:
        stats[source] = sum(1 for image in images if image["source"] == source)
    return stats


def get_image_library_service() -> ImageLibraryService:
    return ImageLibraryService(get_supabase_client())
