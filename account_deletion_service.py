"""
Account Deletion Service
Removes a user's content through the delete_user_data function, then the
auth user itself, logging a snapshot of the profile first.
"""
import logging
from typing import Dict, Any, Optional

from datetime_utils import utc_now_iso
from supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)


class AccountDeletionService:
    def __init__(self, supabase_client: SupabaseClient):
        self.supabase_client = supabase_client
        self.supabase = supabase_client.service_client

    async def delete_user_account(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Delete a user account and all associated data

        Args:
            user_id: User ID to delete
            ip_address: IP address of deletion request
            user_agent: User agent of deletion request

        Returns:
            Dictionary with success status, or error and status_code
        """
        if not self.supabase:
            return {'success': False, 'error': 'Supabase admin not configured', 'status_code': 500}

        # 1. Log the deletion before anything is removed (table is optional)
        snapshot = await self._get_profile_snapshot(user_id)
        try:
            await self._create_deletion_log(user_id, snapshot, ip_address, user_agent)
        except Exception as e:
            logger.warning(f"Could not create deletion log (table may not exist): {e}")

        # 2. Profile, posts, labels links and images rows
        try:
            self.supabase.rpc('delete_user_data', {'p_user_id': user_id}).execute()
        except Exception as e:
            logger.error(f"Error deleting user data for {user_id}: {e}")
            return {'success': False, 'error': 'Failed to delete user data', 'status_code': 500}

        # 3. Auth user last
        result = self.supabase_client.delete_auth_user(user_id)
        if not result.get('success'):
            logger.error(f"Error deleting auth user {user_id}: {result.get('error')}")
            return {'success': False, 'error': 'Failed to delete user account', 'status_code': 500}

        logger.info(f"User account deleted: {user_id}")
        return {'success': True, 'user_id': user_id}

    async def _get_profile_snapshot(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.supabase.table('profiles').select('*').eq('id', user_id).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.warning(f"Could not fetch profile for deletion log: {e}")
            return None

    async def _create_deletion_log(
        self,
        user_id: str,
        snapshot: Optional[Dict[str, Any]],
        ip_address: Optional[str],
        user_agent: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        log_data = {
            'user_id': user_id,
            'display_name': snapshot.get('display_name') if snapshot else None,
            'deleted_at': utc_now_iso(),
            'user_profile_snapshot': snapshot,
            'ip_address': ip_address,
            'user_agent': user_agent
        }
        result = self.supabase.table('user_deletion_log').insert(log_data).execute()
        if result.data:
            logger.info(f"Created deletion log for user {user_id}: {result.data[0].get('id')}")
            return result.data[0]
        return None


def get_account_deletion_service() -> AccountDeletionService:
    return AccountDeletionService(get_supabase_client())
