import os
import logging
from typing import Dict, Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)


class SupabaseClient:
    def __init__(self):
        self.url = os.getenv("SUPABASE_URL")
        self.anon_key = os.getenv("SUPABASE_ANON_KEY")
        self.service_key = os.getenv(
            "SUPABASE_SERVICE_KEY"
        )  # Keep for admin operations only

        self.client: Optional[Client] = None
        self.service_client: Optional[Client] = None

        if not self.url or not (self.anon_key or self.service_key):
            logger.warning(
                "Supabase URL or keys not found in environment variables"
            )
            return

        # Anon client respects RLS, service client bypasses it
        if self.anon_key:
            self.client = create_client(self.url, self.anon_key)
        if self.service_key:
            self.service_client = create_client(self.url, self.service_key)
        else:
            logger.warning(
                "SUPABASE_SERVICE_KEY not set - admin operations will fail"
            )

    def is_configured(self) -> bool:
        return self.service_client is not None

    @property
    def auth_client(self) -> Optional[Client]:
        """Client used for token lookups (prefers anon key)"""
        return self.client or self.service_client

    def get_user_from_token(self, token: str) -> Optional[Dict]:
        """Resolve an access token through Supabase Auth"""
        client = self.auth_client
        if not client or not token:
            return None

        try:
            response = client.auth.get_user(token)
            user = getattr(response, "user", None)
            if not user:
                return None
            return {
                "id": str(user.id),
                "email": getattr(user, "email", None),
            }
        except Exception as e:
            logger.warning(f"Supabase token lookup failed: {str(e)}")
            return None

    def delete_auth_user(self, user_id: str) -> Dict:
        if not self.service_client:
            return {"success": False, "error": "Supabase client not initialized"}

        try:
            self.service_client.auth.admin.delete_user(user_id)
            return {"success": True}
        except Exception as e:
            logger.error(f"Error deleting auth user {user_id}: {str(e)}")
            return {"success": False, "error": str(e)}


# Global instance
_supabase_client = None


def get_supabase_client() -> SupabaseClient:
    """Get or create global Supabase client instance"""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client


def set_supabase_client(client) -> None:
    """Replace the global instance (app wiring and tests)"""
    global _supabase_client
    _supabase_client = client
