import logging
from typing import Any, Dict

from postgrest.exceptions import APIError

from slug_utils import transliterate
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)

LABEL_FIELDS = "id, name, slug, created_at"


class LabelService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    def _db(self):
        if not self.supabase_client.is_configured():
            logger.error("Supabase service client not available for labels")
        return self.supabase_client.service_client

    def _row(self, name: str) -> Dict[str, str]:
        return {"name": name, "slug": transliterate(name)}

    async def list_labels(self) -> Dict[str, Any]:
        db = self._db()
        if not db:
            return {"success": False, "error": "Database not configured", "status_code": 503}

        try:
            result = db.table("labels").select(LABEL_FIELDS).order("name").execute()
            return {"success": True, "data": result.data or []}
        except Exception as e:
            logger.error(f"Error fetching labels: {str(e)}")
            return {"success": False, "error": "Failed to fetch labels", "status_code": 500}

    async def create_label(self, name: str) -> Dict[str, Any]:
        db = self._db()
        if not db:
            return {"success": False, "error": "Database not configured", "status_code": 503}

        row = self._row(name)
        if not row["slug"]:
            return {"success": False, "status_code": 422,
                    "fields": {"name": ["Name must contain at least one letter or number"]}}

        try:
            result = db.table("labels").insert(row).execute()
        except APIError as e:
            if str(e.code) == "23505":
                return {"success": False, "error": "Label with this name already exists", "status_code": 409}
            logger.error(f"Error creating label: {str(e)}")
            return {"success": False, "error": "Failed to create label", "status_code": 500}
        except Exception as e:
            logger.error(f"Error creating label: {str(e)}")
            return {"success": False, "error": "Failed to create label", "status_code": 500}

        logger.info(f"Created label {row['slug']}")
        return {"success": True, "data": result.data[0]}

    async def update_label(self, label_id: str, name: str) -> Dict[str, Any]:
        db = self._db()
        if not db:
            return {"success": False, "error": "Database not configured", "status_code": 503}

        row = self._row(name)
        if not row["slug"]:
            return {"success": False, "status_code": 422,
                    "fields": {"name": ["Name must contain at least one letter or number"]}}

        try:
            result = db.table("labels").update(row).eq("id", label_id).execute()
        except APIError as e:
            if str(e.code) == "23505":
                return {"success": False, "error": "Label with this name already exists", "status_code": 409}
            logger.error(f"Error updating label {label_id}: {str(e)}")
            return {"success": False, "error": "Failed to update label", "status_code": 500}
        except Exception as e:
            logger.error(f"Error updating label {label_id}: {str(e)}")
            return {"success": False, "error": "Failed to update label", "status_code": 500}

        if not result.data:
            return {"success": False, "error": "Label not found", "status_code": 404}
        return {"success": True, "data": result.data[0]}

    async def delete_label(self, label_id: str) -> Dict[str, Any]:
        db = self._db()
        if not db:
            return {"success": False, "error": "Database not configured", "status_code": 503}

        try:
            existing = db.table("labels").select("id").eq("id", label_id).limit(1).execute()
            if not existing.data:
                return {"success": False, "error": "Label not found", "status_code": 404}
            db.table("post_labels").delete().eq("label_id", label_id).execute()
            db.table("labels").delete().eq("id", label_id).execute()
        except Exception as e:
            logger.error(f"Error deleting label {label_id}: {str(e)}")
            return {"success": False, "error": "Failed to delete label", "status_code": 500}

        return {"success": True}


async def get_label_service() -> LabelService:
    return LabelService(get_supabase_client())
