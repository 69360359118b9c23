import os
import json
import logging
from typing import Optional, Dict
from datetime import datetime, timezone

import jwt
import requests
from jwt.algorithms import RSAAlgorithm
from cryptography.hazmat.primitives import serialization

logger = logging.getLogger(__name__)

JWKS_CACHE_TTL = 3600


class SupabaseJWTVerifier:
    """
    Verifies Supabase access tokens without a network round trip when possible.

    HS256 tokens need JWT_SECRET_KEY (the project's JWT secret), RS256 tokens
    are checked against the project's JWKS. Anything else is left to the
    caller, which falls back to asking Supabase Auth directly.
    """

    def __init__(self, supabase_url: Optional[str] = None, jwt_secret: Optional[str] = None):
        self.supabase_url = (supabase_url or os.getenv("SUPABASE_URL") or "").rstrip("/") or None
        self.jwt_secret = jwt_secret or os.getenv("JWT_SECRET_KEY")
        self._jwks_cache = None
        self._jwks_cache_time = None

    def _get_jwks_url(self) -> str:
        if not self.supabase_url:
            raise ValueError("SUPABASE_URL is required")
        return f"{self.supabase_url}/auth/v1/jwks"

    def _fetch_jwks(self) -> Optional[Dict]:
        """Fetch JWT signing keys from Supabase (cached for an hour)"""
        current_time = datetime.now(timezone.utc).timestamp()

        if (self._jwks_cache and self._jwks_cache_time and
                current_time - self._jwks_cache_time < JWKS_CACHE_TTL):
            return self._jwks_cache

        try:
            headers = {}
            anon_key = os.getenv("SUPABASE_ANON_KEY")
            if anon_key:
                headers["apikey"] = anon_key

            response = requests.get(self._get_jwks_url(), headers=headers, timeout=10)

            if response.status_code != 200:
                logger.error(f"Failed to fetch JWKS: HTTP {response.status_code}")
                return None

            self._jwks_cache = response.json()
            self._jwks_cache_time = current_time
            logger.info("Fetched JWKS from Supabase")
            return self._jwks_cache

        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error fetching JWKS: {str(e)}")
            return None

    def _get_public_key_from_jwks(self, kid: str) -> Optional[str]:
        jwks = self._fetch_jwks()
        if not jwks:
            return None

        for key in jwks.get("keys", []):
            if key.get("kid") != kid:
                continue
            try:
                public_key = RSAAlgorithm.from_jwk(json.dumps(key))
                pem = public_key.public_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PublicFormat.SubjectPublicKeyInfo,
                )
                return pem.decode("utf-8")
            except (ValueError, TypeError, jwt.InvalidKeyError) as e:
                logger.error(f"Error converting JWK to PEM: {str(e)}")
                return None

        logger.warning(f"Key ID {kid} not found in JWKS")
        return None

    def can_verify_locally(self, token: str) -> bool:
        """Whether verify_token can give a definitive answer for this token"""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            return False

        algorithm = header.get("alg", "").upper()
        if algorithm == "HS256":
            return bool(self.jwt_secret)
        if algorithm == "RS256":
            return bool(self.supabase_url and header.get("kid"))
        return False

    def verify_token(self, token: str) -> Optional[Dict]:
        """Verify a Supabase JWT (HS256 or RS256), returning its claims"""
        if not token:
            return None

        try:
            unverified_header = jwt.get_unverified_header(token)
            algorithm = unverified_header.get("alg", "").upper()
            options = {"verify_exp": True, "verify_aud": False}

            if algorithm == "HS256":
                if not self.jwt_secret:
                    logger.warning("JWT_SECRET_KEY not set for HS256 token verification")
                    return None
                payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"], options=options)

            elif algorithm == "RS256":
                kid = unverified_header.get("kid")
                if not kid:
                    logger.warning("Token header missing 'kid' field")
                    return None

                public_key = self._get_public_key_from_jwks(kid)
                if not public_key:
                    return None
                payload = jwt.decode(token, public_key, algorithms=["RS256"], options=options)

            else:
                logger.warning(f"Unsupported token algorithm: {algorithm}")
                return None

            if self.supabase_url:
                expected_iss = f"{self.supabase_url}/auth/v1"
                if payload.get("iss") != expected_iss:
                    logger.warning(f"Invalid issuer: {payload.get('iss')} != {expected_iss}")
                    return None

            if not payload.get("sub"):
                logger.warning("Token has no subject")
                return None

            return payload

        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {str(e)}")
            return None


_jwt_verifier: Optional[SupabaseJWTVerifier] = None


def get_jwt_verifier() -> SupabaseJWTVerifier:
    global _jwt_verifier
    if _jwt_verifier is None:
        _jwt_verifier = SupabaseJWTVerifier()
    return _jwt_verifier


def reset_jwt_verifier() -> None:
    """Drop the cached verifier so it re-reads the environment"""
    global _jwt_verifier
    _jwt_verifier = None


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an `Authorization: Bearer <token>` header"""
    if not authorization:
        return None

    parts = authorization.strip().split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    token = parts[1].strip()
    return token or None
