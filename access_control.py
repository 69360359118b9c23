"""
Access Control utilities for profile-role based permissions
"""
import logging
from typing import Optional, Dict

from fastapi import HTTPException
from supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ADMIN = "admin"
VALID_ROLES = {ROLE_USER, ROLE_ADMIN}


class AccessControl:
    """Looks up roles stored on the profiles table"""

    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client

    def get_profile(self, user_id: str) -> Optional[Dict]:
        """Get the user's profile row, None if it does not exist"""
        service_client = self.supabase_client.service_client
        if not service_client:
            logger.error("Supabase service client not available for profile lookup")
            return None

        try:
            result = (
                service_client.table("profiles")
                .select("id, role, display_name")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
            if result.data:
                return result.data[0]
            return None

        except Exception as e:
            logger.error(f"Error getting profile for {user_id}: {str(e)}")
            return None

    def get_user_role(self, user_id: str) -> str:
        """Get user's role, defaulting to 'user'"""
        profile = self.get_profile(user_id)
        role = (profile or {}).get("role") or ROLE_USER
        return role if role in VALID_ROLES else ROLE_USER


# Global access control instance
access_control: Optional[AccessControl] = None


def init_access_control(supabase_client: SupabaseClient):
    """Initialize global access control instance"""
    global access_control
    access_control = AccessControl(supabase_client)


def get_access_control() -> AccessControl:
    """Get global access control instance"""
    if access_control is None:
        raise HTTPException(status_code=500, detail="Access control not initialized")
    return access_control
