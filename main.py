import os
import time
from dotenv import load_dotenv

# Load environment variables FIRST before any other imports
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from access_control import init_access_control
from admin_endpoints import router as admin_router
from auth_endpoints import router as auth_router
from compression_endpoints import router as compression_router
from database import create_tables
from datetime_utils import utc_now_iso
from image_endpoints import router as image_router
from label_endpoints import router as label_router
from layout_endpoints import router as layout_router
from post_endpoints import router as post_router
from rate_limits import limiter
from responses import detail_to_body, fields_from_validation_errors, validation_body
from runtime_config import get_app_version, get_coming_soon, set_coming_soon
from security_middleware import (
    ComingSoonMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
    build_cors_options,
    parse_allowed_origins,
)
from settings_endpoints import router as settings_router
from settings_service import SettingsService
from storage_endpoints import router as storage_router
from supabase_client import get_supabase_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

PUBLIC_ENDPOINTS = [
    "GET /healthz",
    "GET /api/posts",
    "GET /api/posts/{id_or_slug}",
    "GET /api/labels",
    "GET /api/settings/navbar",
    "GET /api/layouts/{page_id}/published",
    "GET /api/layouts/wallpapers",
    "GET /api/storage/health",
    "POST /api/auth/db-ping",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    create_tables()
    persisted = await SettingsService(get_supabase_client()).load_coming_soon()
    if persisted is not None:
        set_coming_soon(persisted)
    logger.info(f"Storytelling API started (coming soon: {get_coming_soon()})")
    yield


app = FastAPI(title="Storytelling API", version=get_app_version(), lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return JSONResponse(status_code=404, content={"error": "Not Found"})
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}")
    return JSONResponse(
        status_code=exc.status_code,
        content=detail_to_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = fields_from_validation_errors(exc.errors())
    logger.warning(f"Validation failed for {request.method} {request.url.path}: {sorted(fields)}")
    return JSONResponse(status_code=422, content=validation_body(fields))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


# Security middleware (the last one added runs first)
app.add_middleware(ComingSoonMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestValidationMiddleware)

allowed_origins = parse_allowed_origins(os.getenv("ALLOWED_ORIGINS"))
exact_origins, origin_regex = build_cors_options(allowed_origins)
logger.info(f"Configured CORS allowed origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=exact_origins,
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

# Local storage driver files
uploads_dir = os.getenv("UPLOADS_DIR", "uploads")
os.makedirs(uploads_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=uploads_dir), name="uploads")

# Initialize access control
init_access_control(get_supabase_client())

# Include routers
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
app.include_router(post_router, prefix="/api/posts", tags=["Posts"])
app.include_router(label_router, prefix="/api/labels", tags=["Labels"])
app.include_router(image_router, prefix="/api/images", tags=["Images"])
app.include_router(storage_router, prefix="/api/storage", tags=["Storage"])
app.include_router(compression_router, prefix="/api/compression", tags=["Compression"])
app.include_router(settings_router, prefix="/api/settings", tags=["Settings"])
app.include_router(layout_router, prefix="/api/layouts", tags=["Layouts"])


@app.get("/")
async def root():
    return {
        "ok": True,
        "service": "storytelling-api",
        "version": get_app_version(),
        "auth": "supabase",
        "endpoints": PUBLIC_ENDPOINTS,
    }


@app.get("/healthz")
async def healthz():
    return {
        "ok": True,
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "timestamp": utc_now_iso(),
    }


@app.get("/api/admin/ping", include_in_schema=False)
async def legacy_admin_ping():
    """Moved to POST /api/auth/db-ping"""
    return RedirectResponse(url="/api/auth/db-ping", status_code=301)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
