"""
FastAPI dependencies for the two authentication paths.

Legacy path: a shared SERVER_ADMIN_TOKEN sent as a Bearer token or in
X-Admin-Token. Current path: a Supabase access token plus the caller's role
from the profiles table.
"""
import os
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from access_control import get_access_control, ROLE_ADMIN, ROLE_USER
from jwt_utils import get_jwt_verifier, extract_bearer_token
from supabase_client import get_supabase_client

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    user_id: Optional[str]
    email: Optional[str] = None
    role: str = ROLE_USER
    via_admin_token: bool = False

    @property
    def is_admin(self) -> bool:
        return self.via_admin_token or self.role == ROLE_ADMIN

    def owns(self, owner_id: Optional[str]) -> bool:
        return bool(self.user_id) and str(owner_id) == str(self.user_id)


def _configured_admin_token() -> Optional[str]:
    token = os.getenv("SERVER_ADMIN_TOKEN", "").strip()
    return token or None


def _presented_admin_token(request: Request) -> Optional[str]:
    header_token = request.headers.get("x-admin-token")
    if header_token and header_token.strip():
        return header_token.strip()
    return extract_bearer_token(request.headers.get("authorization"))


def has_valid_admin_token(request: Request) -> bool:
    """True when the request carries the configured server admin token"""
    expected = _configured_admin_token()
    presented = _presented_admin_token(request)
    if not expected or not presented:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


def resolve_supabase_user(token: str) -> Optional[dict]:
    """
    Turn an access token into {"id", "email"}.

    Tokens we can check locally (HS256 with the project secret, RS256 via
    JWKS) are never sent to Supabase; the rest are resolved with
    auth.get_user.
    """
    if not token:
        return None

    verifier = get_jwt_verifier()
    if verifier.can_verify_locally(token):
        claims = verifier.verify_token(token)
        if not claims:
            return None
        return {"id": claims["sub"], "email": claims.get("email")}

    return get_supabase_client().get_user_from_token(token)


def require_admin_token(request: Request) -> AuthContext:
    """Legacy admin auth using SERVER_ADMIN_TOKEN"""
    if not _configured_admin_token():
        logger.error("SERVER_ADMIN_TOKEN is not configured")
        raise HTTPException(status_code=503, detail="Admin token not configured")

    if not has_valid_admin_token(request):
        raise HTTPException(status_code=401, detail="Unauthorized")

    return AuthContext(user_id=None, role=ROLE_ADMIN, via_admin_token=True)


def require_user(request: Request) -> AuthContext:
    """Valid Supabase session required"""
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    user = resolve_supabase_user(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    role = get_access_control().get_user_role(user["id"])
    return AuthContext(user_id=user["id"], email=user.get("email"), role=role)


def require_admin_or_user(request: Request) -> AuthContext:
    """Admin token if present and valid, otherwise a Supabase user"""
    if has_valid_admin_token(request):
        return AuthContext(user_id=None, role=ROLE_ADMIN, via_admin_token=True)

    return require_user(request)


def require_supabase_admin(request: Request) -> AuthContext:
    """Supabase user whose profile role is admin"""
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    user = resolve_supabase_user(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    profile = get_access_control().get_profile(user["id"])
    if not profile:
        raise HTTPException(status_code=401, detail="User profile not found")

    if profile.get("role") != ROLE_ADMIN:
        logger.warning(f"Non-admin user {user['id']} attempted admin access")
        raise HTTPException(
            status_code=403,
            detail={
                "error": "Admin access required",
                "hint": "Your account does not have the admin role",
            },
        )

    return AuthContext(user_id=user["id"], email=user.get("email"), role=ROLE_ADMIN)


def optional_user(request: Request) -> Optional[AuthContext]:
    """Best-effort identity for public endpoints"""
    if has_valid_admin_token(request):
        return AuthContext(user_id=None, role=ROLE_ADMIN, via_admin_token=True)

    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        return None

    user = resolve_supabase_user(token)
    if not user:
        return None

    role = get_access_control().get_user_role(user["id"])
    return AuthContext(user_id=user["id"], email=user.get("email"), role=role)
