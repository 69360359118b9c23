from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import HTMLResponse, JSONResponse
from typing import List, Optional, Tuple
import os
import re
import logging

from auth_dependencies import has_valid_admin_token
from runtime_config import get_coming_soon

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGINS = [
    "https://dahligarciamarquez.com",
    "https://*.vercel.app",
    "http://localhost:5173",
]

COMING_SOON_ALLOWED_PREFIXES = ("/api/admin/", "/api/auth/")
COMING_SOON_ALLOWED_PATHS = {"/healthz", "/api/admin", "/api/auth"}

COMING_SOON_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Coming Soon</title>
  <style>
    body { margin: 0; min-height: 100vh; display: flex; align-items: center; justify-content: center;
           font-family: Georgia, serif; background: #faf7f2; color: #2b2b2b; }
    main { text-align: center; padding: 2rem; }
    h1 { font-size: 2.5rem; font-weight: normal; margin-bottom: 0.5rem; }
  </style>
</head>
<body>
  <main>
    <h1>Coming Soon!</h1>
    <p>New stories are on their way. Please check back shortly.</p>
  </main>
</body>
</html>
"""


def parse_allowed_origins(raw: Optional[str]) -> List[str]:
    """Comma separated ALLOWED_ORIGINS, falling back to the defaults"""
    origins = [origin.strip().rstrip("/") for origin in (raw or "").split(",") if origin.strip()]
    return origins or list(DEFAULT_ALLOWED_ORIGINS)


def build_cors_options(origins: List[str]) -> Tuple[List[str], Optional[str]]:
    """
    Split origins into exact matches and one regex for `scheme://*.domain`
    entries, as accepted by CORSMiddleware(allow_origins, allow_origin_regex).
    """
    exact = []
    patterns = []
    for origin in origins:
        match = re.match(r"^(https?)://\*\.(.+)$", origin)
        if match:
            scheme, domain = match.groups()
            patterns.append(rf"{scheme}://[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.{re.escape(domain)}")
        else:
            exact.append(origin)
    return exact, "|".join(patterns) or None


def is_origin_allowed(origin: Optional[str], origins: List[str]) -> bool:
    if not origin:
        return True
    exact, pattern = build_cors_options(origins)
    if origin in exact:
        return True
    return bool(pattern and re.fullmatch(pattern, origin))


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        environment = os.getenv("ENVIRONMENT", "dev").lower()
        is_production = environment == "prod"

        security_headers = {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "X-Permitted-Cross-Domain-Policies": "none",
            "Server": "Storytelling-API",
        }

        if is_production:
            security_headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"

        # Uploaded images are embedded by the site, so they need a cross-origin resource policy
        if request.url.path.startswith("/uploads/"):
            security_headers["Cross-Origin-Resource-Policy"] = "cross-origin"
        elif is_production:
            security_headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
        else:
            # Swagger UI in development
            security_headers["Content-Security-Policy"] = "; ".join([
                "default-src 'self'",
                "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
                "img-src 'self' data: https:",
                "frame-ancestors 'none'",
            ])

        for header_name, header_value in security_headers.items():
            response.headers[header_name] = header_value

        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """
    Rejects scanner traffic, oversized URLs and URL-rewriting headers.
    """

    SUSPICIOUS_AGENTS = ("sqlmap", "nikto", "nessus", "w3af", "havij", "masscan")
    DANGEROUS_HEADERS = ("x-original-url", "x-rewrite-url")

    async def dispatch(self, request: Request, call_next):
        if self._is_suspicious_request(request):
            logger.warning(f"Rejected suspicious request to {request.url.path}")
            return JSONResponse(status_code=400, content={"error": "Invalid request format"})

        return await call_next(request)

    def _is_suspicious_request(self, request: Request) -> bool:
        if len(str(request.url)) > 2048:
            return True

        user_agent = request.headers.get("user-agent", "").lower()
        if any(pattern in user_agent for pattern in self.SUSPICIOUS_AGENTS):
            return True

        return any(header in request.headers for header in self.DANGEROUS_HEADERS)


class ComingSoonMiddleware(BaseHTTPMiddleware):
    """
    While coming-soon mode is on, everything except health, admin and auth
    routes answers 503 unless the request carries the admin token.
    """

    async def dispatch(self, request: Request, call_next):
        if not get_coming_soon() or self._is_allowed(request):
            return await call_next(request)

        path = request.url.path
        accept = request.headers.get("accept", "")
        if not path.startswith("/api/") and "text/html" in accept:
            return HTMLResponse(COMING_SOON_HTML, status_code=503)
        return JSONResponse(status_code=503, content={"comingSoon": True, "message": "Coming Soon!"})

    def _is_allowed(self, request: Request) -> bool:
        path = request.url.path
        if request.method == "OPTIONS":
            return True
        if path in COMING_SOON_ALLOWED_PATHS or path.startswith(COMING_SOON_ALLOWED_PREFIXES):
            return True
        return has_valid_admin_token(request)
