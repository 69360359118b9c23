"""
Post Service
Reads and writes posts with their labels and authors, keeping the derived
columns (plain text, sanitized HTML, reading time, excerpt) in sync with the
rich content.
"""
import re
import logging
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError

from auth_dependencies import AuthContext
from content_utils import extract_text, generate_excerpt, render_html
from datetime_utils import utc_now_iso
from html_sanitizer import calculate_reading_time, sanitize_html
from responses import list_body, paginate
from security_utils import sanitize_for_log, validate_search_query
from slug_utils import SlugError, generate_unique_slug, regenerate_slug, validate_slug_availability
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

LIST_FIELDS = "id, title, slug, excerpt, reading_time, cover_image_url, author_id, created_at, updated_at"
ADMIN_LIST_FIELDS = "id, title, slug, excerpt, reading_time, status, author_id, created_at, updated_at"
DETAIL_FIELDS = (
    "id, title, slug, content_rich, content_text, content_html, reading_time, excerpt, "
    "cover_image_url, cover_image_alt, status, author_id, created_at, updated_at"
)

ADMIN_STATUSES = {"draft", "published", "archived", "private", "system"}


def _unique_violation(error: Exception) -> bool:
    return isinstance(error, APIError) and str(getattr(error, "code", "")) == "23505"


def derive_content_fields(content_rich: Dict[str, Any], content_html: Optional[str] = None) -> Dict[str, Any]:
    """content_text, sanitized content_html and reading_time for rich content"""
    content_text = extract_text(content_rich)
    html = sanitize_html(content_html if content_html else render_html(content_rich))
    return {
        "content_text": content_text,
        "content_html": html,
        "reading_time": max(1, calculate_reading_time(content_text)),
    }


class PostService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    @property
    def db(self):
        return self.supabase_client.service_client

    def _unavailable(self) -> Optional[Dict]:
        if not self.db:
            logger.error(
                "Supabase service client not available. Check SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables."
            )
            return {"success": False, "error": "Database not configured", "status_code": 503}
        return None

    # Related rows

    def _attach_relations(self, posts: List[Dict], include_label_ids: bool = False) -> List[Dict]:
        """Add `author` and `labels` to each post"""
        if not posts:
            return posts

        author_ids = sorted({str(p["author_id"]) for p in posts if p.get("author_id")})
        authors = {}
        if author_ids:
            rows = self.db.table("profiles").select("id, display_name").in_("id", author_ids).execute().data or []
            authors = {str(r["id"]): r for r in rows}

        post_ids = [str(p["id"]) for p in posts]
        links = self.db.table("post_labels").select("post_id, label_id").in_("post_id", post_ids).execute().data or []
        labels = {}
        label_ids = sorted({str(link["label_id"]) for link in links})
        if label_ids:
            rows = self.db.table("labels").select("id, name, slug").in_("id", label_ids).execute().data or []
            labels = {str(r["id"]): r for r in rows}

        for post in posts:
            author = authors.get(str(post.get("author_id")))
            post["author"] = {"id": author["id"], "display_name": author.get("display_name")} if author else None
            post_labels = []
            for link in links:
                label = labels.get(str(link["label_id"]))
                if str(link["post_id"]) == str(post["id"]) and label:
                    entry = {"name": label["name"], "slug": label["slug"]}
                    if include_label_ids:
                        entry["id"] = label["id"]
                    post_labels.append(entry)
            post["labels"] = post_labels
        return posts

    def _post_ids_for_label(self, label_slug: str) -> List[str]:
        labels = self.db.table("labels").select("id").eq("slug", label_slug).limit(1).execute().data or []
        if not labels:
            return []
        links = self.db.table("post_labels").select("post_id").eq("label_id", labels[0]["id"]).execute().data or []
        return [str(link["post_id"]) for link in links]

    def _replace_labels(self, post_id: str, label_ids: List[str]) -> None:
        self.db.table("post_labels").delete().eq("post_id", post_id).execute()
        if label_ids:
            self.db.table("post_labels").insert(
                [{"post_id": post_id, "label_id": label_id} for label_id in dict.fromkeys(label_ids)]
            ).execute()

    def _fetch(self, post_id: str, fields: str = DETAIL_FIELDS) -> Optional[Dict]:
        result = self.db.table("posts").select(fields).eq("id", post_id).limit(1).execute()
        return result.data[0] if result.data else None

    # Listing

    async def list_public_posts(self, page: int = 1, limit: int = 20, label: Optional[str] = None,
                                search: Optional[str] = None) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        page, limit, start, end = paginate(page, limit)
        try:
            search = validate_search_query(search)
        except ValueError as e:
            return {"success": False, "error": str(e), "status_code": 400}

        try:
            query = (
                self.db.table("posts")
                .select(LIST_FIELDS, count="exact")
                .eq("status", "published")
            )
            if label:
                post_ids = self._post_ids_for_label(label)
                if not post_ids:
                    return {"success": True, "data": list_body([], page, limit, 0)}
                query = query.in_("id", post_ids)
            if search:
                query = query.or_(f"title.ilike.%{search}%,content_text.ilike.%{search}%")

            result = query.order("created_at", desc=True).range(start, end).execute()
            posts = self._attach_relations(result.data or [])
            return {"success": True, "data": list_body(posts, page, limit, result.count or 0)}
        except Exception as e:
            logger.error(f"Error fetching posts: {str(e)}")
            return {"success": False, "error": "Failed to fetch posts", "status_code": 500}

    async def list_admin_posts(self, page: int = 1, limit: int = 20, status: Optional[str] = None,
                               search: Optional[str] = None) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        page, limit, start, end = paginate(page, limit)
        try:
            search = validate_search_query(search)
        except ValueError as e:
            return {"success": False, "error": str(e), "status_code": 400}

        try:
            query = self.db.table("posts").select(ADMIN_LIST_FIELDS, count="exact")
            if status in ADMIN_STATUSES:
                query = query.eq("status", status)
            if search:
                query = query.or_(f"title.ilike.%{search}%,content_text.ilike.%{search}%")

            result = query.order("created_at", desc=True).range(start, end).execute()
            posts = self._attach_relations(result.data or [])
            return {"success": True, "data": list_body(posts, page, limit, result.count or 0)}
        except Exception as e:
            logger.error(f"Error fetching admin posts: {str(e)}")
            return {"success": False, "error": "Failed to fetch posts", "status_code": 500}

    # Single post

    async def get_post(self, id_or_slug: str, auth: Optional[AuthContext] = None) -> Dict[str, Any]:
        """
        Fetch by UUID or slug.

        Unpublished posts are only returned to their author or an admin.
        """
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        column = "id" if UUID_PATTERN.match(id_or_slug) else "slug"
        try:
            result = self.db.table("posts").select(DETAIL_FIELDS).eq(column, id_or_slug).limit(1).execute()
        except Exception as e:
            logger.error(f"Error fetching post {sanitize_for_log(id_or_slug)}: {str(e)}")
            return {"success": False, "error": "Failed to fetch post", "status_code": 500}

        post = result.data[0] if result.data else None
        if post and post.get("status") != "published":
            if not auth or not (auth.is_admin or auth.owns(post.get("author_id"))):
                post = None
        if not post:
            return {"success": False, "error": "Post not found", "status_code": 404}

        self._attach_relations([post], include_label_ids=True)
        return {"success": True, "data": post}

    # Writes

    async def create_post(self, payload: Dict[str, Any], auth: AuthContext) -> Dict[str, Any]:
        """
        Returns {"success": True, "data": post, "sync": (post_id, content_rich, cover)}
        so the caller can schedule the image sync.
        """
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        if auth.via_admin_token:
            author_id = payload.get("author_id")
            if not author_id:
                return {
                    "success": False,
                    "status_code": 422,
                    "fields": {"author_id": ["author_id is required when using the admin token"]},
                }
        else:
            author_id = auth.user_id

        title = payload["title"]
        slug = payload.get("slug")
        if slug:
            available, reason = validate_slug_availability(slug)
            if not available:
                return {"success": False, "status_code": 422, "fields": {"slug": [reason]}, "code": "UNAVAILABLE"}
        else:
            try:
                slug = generate_unique_slug(title)
            except SlugError as e:
                return {"success": False, "status_code": 422, "fields": {"slug": [str(e)]}, "code": "GENERATION_FAILED"}

        content_rich = payload["content_rich"]
        derived = derive_content_fields(content_rich, payload.get("content_html"))
        status = payload.get("status") or "draft"
        row = {
            "title": title,
            "slug": slug,
            "content_rich": content_rich,
            "excerpt": payload.get("excerpt") or generate_excerpt(derived["content_text"]),
            "cover_image_url": payload.get("cover_image_url"),
            "cover_image_alt": payload.get("cover_image_alt"),
            "status": getattr(status, "value", status),
            "author_id": author_id,
            **derived,
        }

        try:
            result = self.db.table("posts").insert(row).execute()
        except Exception as e:
            if _unique_violation(e):
                return {"success": False, "error": "A post with this slug already exists", "status_code": 409}
            logger.error(f"Error creating post: {str(e)}")
            return {"success": False, "error": "Failed to create post", "status_code": 500}

        post = result.data[0]
        label_ids = payload.get("label_ids") or []
        if label_ids:
            try:
                self._replace_labels(str(post["id"]), label_ids)
            except Exception as e:
                # The post exists; a labelling failure must not hide it
                logger.error(f"Error attaching labels to post {post['id']}: {str(e)}")

        logger.info(f"Created post {post['id']} ({slug})")
        self._attach_relations([post], include_label_ids=True)
        return {
            "success": True,
            "data": post,
            "sync": (str(post["id"]), content_rich, row["cover_image_url"]),
        }

    async def update_post(self, post_id: str, updates: Dict[str, Any], auth: AuthContext) -> Dict[str, Any]:
        """
        Partial update. The result carries "sync" when content or cover
        changed so the caller can refresh the image index.
        """
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        try:
            existing = self._fetch(post_id)
        except Exception as e:
            logger.error(f"Error fetching post {sanitize_for_log(post_id)}: {str(e)}")
            return {"success": False, "error": "Failed to update post", "status_code": 500}

        if not existing:
            return {"success": False, "error": "Post not found", "status_code": 404}
        if not auth.is_admin and not auth.owns(existing.get("author_id")):
            return {"success": False, "error": "Not authorized to update this post", "status_code": 403}

        changes: Dict[str, Any] = {"updated_at": utc_now_iso()}
        for key in ("title", "excerpt", "cover_image_url", "cover_image_alt"):
            if key in updates:
                changes[key] = updates[key]
        if updates.get("status") is not None:
            changes["status"] = getattr(updates["status"], "value", updates["status"])

        if updates.get("content_rich") is not None:
            changes["content_rich"] = updates["content_rich"]
            changes.update(derive_content_fields(updates["content_rich"], updates.get("content_html")))

        slug = updates.get("slug")
        if slug and slug != existing.get("slug"):
            available, reason = validate_slug_availability(slug, exclude_id=post_id)
            if not available:
                return {"success": False, "status_code": 422, "fields": {"slug": [reason]}, "code": "UNAVAILABLE"}
            changes["slug"] = slug
        elif not slug and updates.get("title") and (
            updates.get("regenerateSlug") or updates["title"] != existing.get("title")
        ):
            try:
                changes["slug"] = regenerate_slug(post_id, updates["title"])
            except SlugError as e:
                return {"success": False, "status_code": 422, "fields": {"slug": [str(e)]}, "code": "GENERATION_FAILED"}

        try:
            result = self.db.table("posts").update(changes).eq("id", post_id).execute()
        except Exception as e:
            if _unique_violation(e):
                return {"success": False, "error": "A post with this slug already exists", "status_code": 409}
            logger.error(f"Error updating post {post_id}: {str(e)}")
            return {"success": False, "error": "Failed to update post", "status_code": 500}

        post = result.data[0] if result.data else {**existing, **changes}

        if updates.get("label_ids") is not None:
            try:
                self._replace_labels(post_id, updates["label_ids"])
            except Exception as e:
                logger.error(f"Error replacing labels on post {post_id}: {str(e)}")
                return {"success": False, "error": "Failed to update post labels", "status_code": 500}

        self._attach_relations([post], include_label_ids=True)
        response = {"success": True, "data": post}
        if "content_rich" in changes or "cover_image_url" in changes:
            response["sync"] = (post_id, post.get("content_rich"), post.get("cover_image_url"))
        return response

    async def delete_post(self, post_id: str, auth: AuthContext) -> Dict[str, Any]:
        unavailable = self._unavailable()
        if unavailable:
            return unavailable

        try:
            existing = self._fetch(post_id, fields="id, author_id")
        except Exception as e:
            logger.error(f"Error fetching post {sanitize_for_log(post_id)}: {str(e)}")
            return {"success": False, "error": "Failed to delete post", "status_code": 500}

        if not existing:
            return {"success": False, "error": "Post not found", "status_code": 404}
        if not auth.is_admin and not auth.owns(existing.get("author_id")):
            return {"success": False, "error": "Not authorized to delete this post", "status_code": 403}

        try:
            self.db.table("post_labels").delete().eq("post_id", post_id).execute()
            self.db.table("posts").delete().eq("id", post_id).execute()
        except Exception as e:
            logger.error(f"Error deleting post {post_id}: {str(e)}")
            return {"success": False, "error": "Failed to delete post", "status_code": 500}

        logger.info(f"Deleted post {post_id}")
        return {"success": True}


async def get_post_service() -> PostService:
    """
    Dependency to get PostService instance.
    """
    return PostService(get_supabase_client())
