"""
Image Tracking Service
Keeps the post_images table in step with the images referenced by each post
(cover image plus inline image nodes in the rich content), and runs the
batch reconciliation that rebuilds it for every post.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from datetime_utils import utc_now_iso, is_older_than
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
RECONCILE_MAX_AGE_DAYS = 7
HISTORY_LIMIT = 10

# Keys that never hold child nodes
_SKIP_KEYS = {"content", "attrs", "marks", "type", "text"}


def fetch_all_rows(build_query: Callable[[], Any], page_size: int = PAGE_SIZE) -> List[Dict]:
    """Page through a PostgREST query with .range() until it runs dry"""
    rows: List[Dict] = []
    start = 0
    while True:
        result = build_query().range(start, start + page_size - 1).execute()
        batch = result.data or []
        rows.extend(batch)
        if len(batch) < page_size:
            return rows
        start += page_size


def _node_text(node: Any) -> str:
    if isinstance(node, list):
        return " ".join(t for t in (_node_text(n) for n in node) if t)
    if isinstance(node, dict):
        if node.get("type") == "text":
            return node.get("text") or ""
        return _node_text(node.get("content") or [])
    return ""


def _walk_images(node: Any, position: List[int], figure: Optional[Dict], found: List[Dict]) -> None:
    if isinstance(node, list):
        for index, child in enumerate(node):
            _walk_images(child, position + [index], figure, found)
        return

    if not isinstance(node, dict):
        return

    node_type = node.get("type")
    attrs = node.get("attrs") or {}

    if node_type == "image" and attrs.get("src"):
        usage_context = {
            "node_type": "image",
            "position": position,
            "title": attrs.get("title") or None,
        }
        if figure is not None:
            usage_context["is_figure"] = True
            usage_context["caption"] = figure.get("caption") or None
        found.append({
            "image_url": attrs["src"],
            "image_type": "inline",
            "alt_text": attrs.get("alt") or None,
            "width": attrs.get("width") or None,
            "height": attrs.get("height") or None,
            "usage_context": usage_context,
        })

    child_figure = figure
    if node_type == "figure":
        caption_nodes = [c for c in node.get("content") or [] if isinstance(c, dict) and c.get("type") == "figcaption"]
        child_figure = {"caption": _node_text(caption_nodes)}

    if isinstance(node.get("content"), list):
        _walk_images(node["content"], position, child_figure, found)

    # Some extensions nest documents under other keys
    for key, value in node.items():
        if key in _SKIP_KEYS:
            continue
        if isinstance(value, (dict, list)):
            _walk_images(value, position, child_figure, found)


def extract_post_images(content_rich: Optional[Dict], cover_image_url: Optional[str]) -> List[Dict]:
    """
    All image references for a post, one per (image_url, image_type).
    The cover image comes first.
    """
    found: List[Dict] = []
    if cover_image_url:
        found.append({
            "image_url": cover_image_url,
            "image_type": "cover",
            "alt_text": None,
            "width": None,
            "height": None,
            "usage_context": {"source": "cover_image_url"},
        })

    if isinstance(content_rich, str):
        try:
            content_rich = json.loads(content_rich)
        except ValueError:
            content_rich = None

    if content_rich:
        _walk_images(content_rich, [], None, found)

    unique: Dict[Tuple[str, str], Dict] = {}
    for image in found:
        unique.setdefault((image["image_url"], image["image_type"]), image)
    return list(unique.values())


def _needs_update(existing: Dict, found: Dict) -> bool:
    for key in ("alt_text", "width", "height"):
        if existing.get(key) != found.get(key):
            return True
    return json.dumps(existing.get("usage_context"), sort_keys=True) != json.dumps(
        found.get("usage_context"), sort_keys=True
    )


class ImageTrackingService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    @property
    def db(self):
        if not self.supabase_client.is_configured():
            raise RuntimeError("Supabase service client not available")
        return self.supabase_client.service_client

    def sync_post_images(self, post_id: str, content_rich: Optional[Dict] = None,
                         cover_image_url: Optional[str] = None) -> Dict[str, Any]:
        images_found = extract_post_images(content_rich, cover_image_url)

        existing = (
            self.db.table("post_images").select("*").eq("post_id", post_id).execute().data
            or []
        )
        existing_by_key = {(row["image_url"], row["image_type"]): row for row in existing}
        found_keys = set()

        to_add = []
        to_update = []
        for image in images_found:
            key = (image["image_url"], image["image_type"])
            found_keys.add(key)
            row = existing_by_key.get(key)
            if row is None:
                to_add.append(image)
            elif _needs_update(row, image):
                to_update.append((row["id"], image))

        to_remove = [row["id"] for row in existing if (row["image_url"], row["image_type"]) not in found_keys]

        if to_add:
            self.db.table("post_images").insert(
                [{"post_id": post_id, **image} for image in to_add]
            ).execute()

        for row_id, image in to_update:
            self.db.table("post_images").update({
                "alt_text": image["alt_text"],
                "width": image["width"],
                "height": image["height"],
                "usage_context": image["usage_context"],
                "updated_at": utc_now_iso(),
            }).eq("id", row_id).execute()

        if to_remove:
            self.db.table("post_images").delete().in_("id", to_remove).execute()

        return {
            "post_id": post_id,
            "images_found": len(images_found),
            "images_added": len(to_add),
            "images_updated": len(to_update),
            "images_removed": len(to_remove),
        }

    def sync_post_images_safely(self, post_id: str, content_rich: Optional[Dict] = None,
                                cover_image_url: Optional[str] = None) -> None:
        """Background-task wrapper; tracking must never break a post write"""
        try:
            result = self.sync_post_images(post_id, content_rich, cover_image_url)
            logger.info(
                f"Synced images for post {post_id}: +{result['images_added']} "
                f"~{result['images_updated']} -{result['images_removed']}"
            )
        except Exception as e:
            logger.error(f"Image sync failed for post {post_id}: {str(e)}")

    def remove_post_images(self, post_id: str) -> None:
        self.db.table("post_images").delete().eq("post_id", post_id).execute()

    def remove_post_images_safely(self, post_id: str) -> None:
        try:
            self.remove_post_images(post_id)
        except Exception as e:
            logger.error(f"Failed to remove tracked images for post {post_id}: {str(e)}")

    def get_post_image_stats(self, post_id: str) -> Dict[str, int]:
        rows = (
            self.db.table("post_images").select("image_type").eq("post_id", post_id).execute().data
            or []
        )
        return {
            "total": len(rows),
            "cover_images": sum(1 for r in rows if r.get("image_type") == "cover"),
            "inline_images": sum(1 for r in rows if r.get("image_type") == "inline"),
        }

    def get_image_usage_stats(self) -> List[Dict[str, Any]]:
        rows = fetch_all_rows(
            lambda: self.db.table("post_images").select("image_url, post_id, created_at, updated_at").order("image_url")
        )

        post_ids = sorted({row["post_id"] for row in rows})
        titles = {}
        if post_ids:
            posts = self.db.table("posts").select("id, title").in_("id", post_ids).execute().data or []
            titles = {str(p["id"]): p.get("title") for p in posts}

        usage: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            url = row["image_url"]
            stats = usage.setdefault(url, {
                "image_url": url,
                "usage_count": 0,
                "posts": [],
                "first_used": row.get("created_at"),
                "last_used": row.get("updated_at") or row.get("created_at"),
            })
            stats["usage_count"] += 1
            stats["posts"].append({"post_id": row["post_id"], "post_title": titles.get(str(row["post_id"]))})

            created = row.get("created_at")
            updated = row.get("updated_at") or created
            if created and (not stats["first_used"] or created < stats["first_used"]):
                stats["first_used"] = created
            if updated and (not stats["last_used"] or updated > stats["last_used"]):
                stats["last_used"] = updated

        return list(usage.values())

    def reconcile_all(self) -> Dict[str, Any]:
        """Re-sync every post and record the run in image_reconciliation_log"""
        log_id = None
        try:
            log = self.db.table("image_reconciliation_log").insert({
                "started_at": utc_now_iso(),
                "status": "running",
            }).execute()
            if log.data:
                log_id = log.data[0].get("id")
        except Exception as e:
            logger.warning(f"Could not create reconciliation log entry: {str(e)}")

        stats = {
            "posts_processed": 0,
            "images_found": 0,
            "images_added": 0,
            "images_updated": 0,
            "images_removed": 0,
            "errors": 0,
        }

        try:
            posts = fetch_all_rows(
                lambda: self.db.table("posts").select("id, content_rich, cover_image_url").order("created_at")
            )
            for post in posts:
                try:
                    result = self.sync_post_images(
                        str(post["id"]), post.get("content_rich"), post.get("cover_image_url")
                    )
                except Exception as e:
                    stats["errors"] += 1
                    logger.error(f"Reconciliation failed for post {post['id']}: {str(e)}")
                    continue

                stats["posts_processed"] += 1
                for key in ("images_found", "images_added", "images_updated", "images_removed"):
                    stats[key] += result[key]

        except Exception as e:
            logger.error(f"Image reconciliation aborted: {str(e)}")
            self._finish_log(log_id, "failed", stats, error_message=str(e))
            raise

        self._finish_log(log_id, "completed", stats)
        logger.info(f"Image reconciliation completed: {stats}")
        return stats

    def _finish_log(self, log_id, status: str, stats: Dict[str, int], error_message: Optional[str] = None) -> None:
        if log_id is None:
            return
        try:
            self.db.table("image_reconciliation_log").update({
                "completed_at": utc_now_iso(),
                "status": status,
                "posts_processed": stats["posts_processed"],
                "images_found": stats["images_found"],
                "images_added": stats["images_added"],
                "images_removed": stats["images_removed"],
                "error_message": error_message,
            }).eq("id", log_id).execute()
        except Exception as e:
            logger.warning(f"Could not update reconciliation log {log_id}: {str(e)}")

    def get_reconciliation_status(self) -> Dict[str, Any]:
        total_posts = self.db.table("posts").select("id", count="exact").limit(1).execute().count or 0
        tracked_images = self.db.table("post_images").select("id", count="exact").limit(1).execute().count or 0

        history = (
            self.db.table("image_reconciliation_log")
            .select("*")
            .order("started_at", desc=True)
            .limit(HISTORY_LIMIT)
            .execute()
            .data
            or []
        )
        last = history[0] if history else None
        last_completed = next((h for h in history if h.get("status") == "completed"), None)

        needs_reconciliation = (
            last_completed is None
            or (last is not None and last.get("status") == "failed")
            or is_older_than(last_completed.get("completed_at") or last_completed.get("started_at"),
                             RECONCILE_MAX_AGE_DAYS)
            or (total_posts > 0 and tracked_images == 0)
        )

        return {
            "needs_reconciliation": needs_reconciliation,
            "current_stats": {
                "total_posts": total_posts,
                "tracked_images": tracked_images,
            },
            "last_reconciliation": last,
            "reconciliation_history": history,
        }

    def find_duplicates(self) -> Dict[str, Any]:
        rows = fetch_all_rows(
            lambda: self.db.table("post_images").select("id, post_id, image_url, image_type, created_at").order("created_at")
        )
        groups: Dict[Tuple, List[Dict]] = {}
        for row in rows:
            key = (str(row["post_id"]), row["image_url"], row["image_type"])
            groups.setdefault(key, []).append(row)

        duplicates = []
        for (post_id, image_url, image_type), members in groups.items():
            if len(members) < 2:
                continue
            members.sort(key=lambda r: (r.get("created_at") or "", str(r["id"])))
            duplicates.append({
                "post_id": post_id,
                "image_url": image_url,
                "image_type": image_type,
                "count": len(members),
                "keep_id": members[0]["id"],
                "remove_ids": [m["id"] for m in members[1:]],
            })

        return {
            "duplicates": duplicates,
            "total_groups": len(duplicates),
            "total_duplicate_records": sum(len(d["remove_ids"]) for d in duplicates),
        }

    def deduplicate(self, dry_run: bool = False) -> Dict[str, Any]:
        """Keep the oldest row of each duplicate group"""
        report = self.find_duplicates()
        remove_ids = [rid for d in report["duplicates"] for rid in d["remove_ids"]]

        if remove_ids and not dry_run:
            for start in range(0, len(remove_ids), 100):
                self.db.table("post_images").delete().in_("id", remove_ids[start:start + 100]).execute()
            logger.info(f"Removed {len(remove_ids)} duplicate post_images rows")

        return {
            "dryRun": dry_run,
            "recordsRemoved": len(remove_ids),
            "recordsKept": report["total_groups"],
            "groups": report["duplicates"],
        }


def get_image_tracking_service() -> ImageTrackingService:
    return ImageTrackingService(get_supabase_client())
