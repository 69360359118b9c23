"""
Page layout slots and page wallpapers.

Each page has up to MAX_SLOTS saved card layouts in page_layouts, one of
which may be published. Wallpaper settings are stored on every slot row of
the page; one page can be flagged as the universal wallpaper source.
"""
import re
import logging
from typing import Any, Dict, List, Optional

from datetime_utils import utc_now_iso
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

LAYOUTS_TABLE = "page_layouts"
MAX_SLOTS = 10
PAGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,60}$")
# Taken by the /wallpapers routes
RESERVED_PAGE_IDS = frozenset({"wallpapers"})

DEFAULT_LAYOUT_SETTINGS = {
    "scrollRatio": 2,
    "scrollSpeed": 1,
    "wallpaperPosition": 0,
    "alignmentMargin": 1,
}


class LayoutError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LayoutService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    @property
    def db(self):
        if not self.supabase_client.is_configured():
            raise LayoutError("Database not configured", status_code=503)
        return self.supabase_client.service_client

    def _check_page(self, page_id: str) -> None:
        if not PAGE_ID_PATTERN.match(page_id or "") or page_id in RESERVED_PAGE_IDS:
            raise LayoutError("Invalid page id", status_code=400)

    def _check_slot(self, slot_number: int) -> None:
        if slot_number < 1:
            raise LayoutError("Slot number must be 1 or greater", status_code=400)

    def _slots(self, page_id: str) -> List[Dict]:
        return (
            self.db.table(LAYOUTS_TABLE)
            .select("*")
            .eq("page_id", page_id)
            .order("slot_number")
            .execute()
            .data
            or []
        )

    def _find(self, page_id: str, slot_number: int) -> Optional[Dict]:
        result = (
            self.db.table(LAYOUTS_TABLE)
            .select("*")
            .eq("page_id", page_id)
            .eq("slot_number", slot_number)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def _require(self, page_id: str, slot_number: int) -> Dict:
        self._check_page(page_id)
        self._check_slot(slot_number)
        slot = self._find(page_id, slot_number)
        if not slot:
            raise LayoutError("Layout slot not found", status_code=404)
        return slot

    # Slots

    async def list_slots(self, page_id: str) -> List[Dict]:
        self._check_page(page_id)
        return self._slots(page_id)

    async def get_slot(self, page_id: str, slot_number: int) -> Dict:
        return self._require(page_id, slot_number)

    async def next_slot_number(self, page_id: str) -> int:
        self._check_page(page_id)
        slots = self._slots(page_id)
        return max((s["slot_number"] for s in slots), default=0) + 1

    async def get_published(self, page_id: str) -> Optional[Dict]:
        self._check_page(page_id)
        result = (
            self.db.table(LAYOUTS_TABLE)
            .select("*")
            .eq("page_id", page_id)
            .eq("is_published", True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def save_slot(self, page_id: str, slot_number: int, name: Optional[str],
                        cards: List[Dict], settings: Dict[str, Any]) -> Dict:
        self._check_page(page_id)
        self._check_slot(slot_number)

        existing = self._find(page_id, slot_number)
        values = {
            "name": (name or "").strip() or (existing or {}).get("name") or f"Layout {slot_number}",
            "cards": cards,
            "settings": {**DEFAULT_LAYOUT_SETTINGS, **(settings or {})},
        }

        if existing:
            result = (
                self.db.table(LAYOUTS_TABLE)
                .update({**values, "updated_at": utc_now_iso()})
                .eq("id", existing["id"])
                .execute()
            )
            return result.data[0] if result.data else {**existing, **values}

        siblings = self._slots(page_id)
        if len(siblings) >= MAX_SLOTS:
            raise LayoutError(f"Maximum of {MAX_SLOTS} layout slots per page", status_code=400)

        # New slots inherit the page wallpaper so every row stays in step
        wallpaper = siblings[0].get("wallpaper") if siblings else None
        universal = bool(siblings[0].get("is_universal_wallpaper")) if siblings else False

        result = self.db.table(LAYOUTS_TABLE).insert({
            "page_id": page_id,
            "slot_number": slot_number,
            "is_published": False,
            "wallpaper": wallpaper,
            "is_universal_wallpaper": universal,
            **values,
        }).execute()
        logger.info(f"Created layout slot {slot_number} for page {page_id}")
        return result.data[0]

    async def publish_slot(self, page_id: str, slot_number: int) -> Dict:
        slot = self._require(page_id, slot_number)
        self.db.table(LAYOUTS_TABLE).update({"is_published": False}).eq("page_id", page_id).execute()
        result = (
            self.db.table(LAYOUTS_TABLE)
            .update({"is_published": True, "updated_at": utc_now_iso()})
            .eq("id", slot["id"])
            .execute()
        )
        logger.info(f"Published layout slot {slot_number} for page {page_id}")
        return result.data[0] if result.data else {**slot, "is_published": True}

    async def rename_slot(self, page_id: str, slot_number: int, name: str) -> Dict:
        slot = self._require(page_id, slot_number)
        result = (
            self.db.table(LAYOUTS_TABLE)
            .update({"name": name, "updated_at": utc_now_iso()})
            .eq("id", slot["id"])
            .execute()
        )
        return result.data[0] if result.data else {**slot, "name": name}

    async def delete_slot(self, page_id: str, slot_number: int) -> None:
        slot = self._require(page_id, slot_number)
        self.db.table(LAYOUTS_TABLE).delete().eq("id", slot["id"]).execute()
        logger.info(f"Deleted layout slot {slot_number} for page {page_id}")

    # Wallpapers

    async def get_page_wallpaper(self, page_id: str) -> Optional[Dict]:
        slots = await self.list_slots(page_id)
        return slots[0].get("wallpaper") if slots else None

    async def set_page_wallpaper(self, page_id: str, wallpaper: Dict[str, Any]) -> Dict:
        self._check_page(page_id)
        result = (
            self.db.table(LAYOUTS_TABLE)
            .update({"wallpaper": wallpaper, "updated_at": utc_now_iso()})
            .eq("page_id", page_id)
            .execute()
        )
        if not result.data:
            self.db.table(LAYOUTS_TABLE).insert({
                "page_id": page_id,
                "slot_number": 1,
                "name": "Layout 1",
                "cards": [],
                "settings": dict(DEFAULT_LAYOUT_SETTINGS),
                "is_published": False,
                "wallpaper": wallpaper,
                "is_universal_wallpaper": False,
            }).execute()
        return wallpaper

    async def remove_page_wallpaper(self, page_id: str) -> bool:
        self._check_page(page_id)
        result = (
            self.db.table(LAYOUTS_TABLE)
            .update({"wallpaper": None, "updated_at": utc_now_iso()})
            .eq("page_id", page_id)
            .execute()
        )
        return bool(result.data)

    async def all_wallpapers(self) -> Dict[str, Any]:
        rows = (
            self.db.table(LAYOUTS_TABLE)
            .select("page_id, slot_number, wallpaper, is_universal_wallpaper")
            .order("page_id")
            .order("slot_number")
            .execute()
            .data
            or []
        )
        wallpapers = {}
        universal_page_id = None
        seen = set()
        for row in rows:
            if row["page_id"] in seen:
                continue
            seen.add(row["page_id"])
            if row.get("wallpaper"):
                wallpapers[row["page_id"]] = row["wallpaper"]
            if row.get("is_universal_wallpaper"):
                universal_page_id = row["page_id"]
        return {"wallpapers": wallpapers, "universalPageId": universal_page_id}

    def _universal_page(self) -> Optional[str]:
        rows = (
            self.db.table(LAYOUTS_TABLE)
            .select("page_id")
            .eq("is_universal_wallpaper", True)
            .limit(1)
            .execute()
            .data
            or []
        )
        return rows[0]["page_id"] if rows else None

    async def set_universal(self, page_id: str) -> Optional[str]:
        """Flag `page_id` as the universal source; returns the previous one"""
        self._check_page(page_id)
        if not self._slots(page_id):
            raise LayoutError("Page has no layout to use as wallpaper source", status_code=404)

        previous = self._universal_page()
        self.db.table(LAYOUTS_TABLE).update({"is_universal_wallpaper": False}).eq("is_universal_wallpaper", True).execute()
        self.db.table(LAYOUTS_TABLE).update({
            "is_universal_wallpaper": True,
            "updated_at": utc_now_iso(),
        }).eq("page_id", page_id).execute()
        logger.info(f"Universal wallpaper source set to {page_id} (was {previous})")
        return previous

    async def clear_universal(self) -> bool:
        result = (
            self.db.table(LAYOUTS_TABLE)
            .update({"is_universal_wallpaper": False})
            .eq("is_universal_wallpaper", True)
            .execute()
        )
        return bool(result.data)

    async def get_universal(self) -> Optional[Dict[str, Any]]:
        rows = (
            self.db.table(LAYOUTS_TABLE)
            .select("page_id, wallpaper")
            .eq("is_universal_wallpaper", True)
            .order("slot_number")
            .execute()
            .data
            or []
        )
        for row in rows:
            if row.get("wallpaper"):
                return {"pageId": row["page_id"], "wallpaper": row["wallpaper"]}
        return None


async def get_layout_service() -> LayoutService:
    return LayoutService(get_supabase_client())
