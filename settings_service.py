"""
Site settings stored as key/value rows in system_settings: the navbar
configuration and the persisted coming-soon flag.
"""
import logging
from typing import Any, Dict, List, Optional

from datetime_utils import utc_now_iso
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

SETTINGS_TABLE = "system_settings"
NAVBAR_KEY = "navbar_items"
COMING_SOON_KEY = "coming_soon_mode"

DEFAULT_NAVBAR_ITEMS = [
    {"id": "home", "label": "Home", "path": "/", "hidden": False, "order": 1},
    {"id": "journals", "label": "Journals", "path": "/blog", "hidden": False, "order": 2},
    {"id": "about", "label": "About", "path": "/about", "hidden": False, "order": 3},
    {"id": "contact", "label": "Contact", "path": "/contact", "hidden": False, "order": 4},
]


class NavbarError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _sorted_items(items: List[Dict]) -> List[Dict]:
    return sorted(items, key=lambda item: item.get("order", 0))


class SettingsService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    def _get(self, key: str) -> Any:
        db = self.supabase_client.service_client
        result = db.table(SETTINGS_TABLE).select("value").eq("key", key).limit(1).execute()
        return result.data[0]["value"] if result.data else None

    def _put(self, key: str, value: Any, description: Optional[str] = None) -> None:
        db = self.supabase_client.service_client
        result = (
            db.table(SETTINGS_TABLE)
            .update({"value": value, "updated_at": utc_now_iso()})
            .eq("key", key)
            .execute()
        )
        if not result.data:
            row = {"key": key, "value": value}
            if description:
                row["description"] = description
            db.table(SETTINGS_TABLE).insert(row).execute()

    # Coming soon

    async def load_coming_soon(self) -> Optional[bool]:
        """Persisted flag, or None when unavailable"""
        if not self.supabase_client.is_configured():
            return None
        try:
            return _as_bool(self._get(COMING_SOON_KEY))
        except Exception as e:
            logger.warning(f"Could not load coming soon setting: {str(e)}")
            return None

    async def persist_coming_soon(self, enabled: bool) -> bool:
        if not self.supabase_client.is_configured():
            return False
        try:
            self._put(COMING_SOON_KEY, enabled, "Enable Coming Soon mode to block non-admin traffic")
            return True
        except Exception as e:
            logger.error(f"Could not persist coming soon setting: {str(e)}")
            return False

    # Navbar

    async def get_navbar_items(self) -> List[Dict]:
        if not self.supabase_client.is_configured():
            return _sorted_items([dict(item) for item in DEFAULT_NAVBAR_ITEMS])

        try:
            items = self._get(NAVBAR_KEY)
        except Exception as e:
            logger.error(f"Error fetching navbar items: {str(e)}")
            items = None

        if not isinstance(items, list) or not items:
            items = [dict(item) for item in DEFAULT_NAVBAR_ITEMS]
        return _sorted_items(items)

    async def _save_navbar(self, items: List[Dict]) -> List[Dict]:
        if not self.supabase_client.is_configured():
            raise NavbarError("Database not configured", status_code=503)
        try:
            self._put(NAVBAR_KEY, items, "Navbar items configuration")
        except Exception as e:
            logger.error(f"Error saving navbar items: {str(e)}")
            raise NavbarError("Failed to update navbar", status_code=500)
        return _sorted_items(items)

    async def toggle_navbar_item(self, item_id: str) -> List[Dict]:
        items = await self.get_navbar_items()
        target = next((item for item in items if item.get("id") == item_id), None)
        if target is None:
            raise NavbarError("Navbar item not found", status_code=404)

        visible = [item for item in items if not item.get("hidden")]
        if not target.get("hidden") and len(visible) == 1:
            raise NavbarError("Cannot hide the last visible navbar item", status_code=400)

        target["hidden"] = not target.get("hidden", False)
        logger.info(f"Navbar item {item_id} hidden={target['hidden']}")
        return await self._save_navbar(items)

    async def update_navbar_label(self, item_id: str, label: str) -> List[Dict]:
        items = await self.get_navbar_items()
        target = next((item for item in items if item.get("id") == item_id), None)
        if target is None:
            raise NavbarError("Navbar item not found", status_code=404)

        target["label"] = label
        return await self._save_navbar(items)


async def get_settings_service() -> SettingsService:
    return SettingsService(get_supabase_client())
