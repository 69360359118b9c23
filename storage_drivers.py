"""
Pluggable image blob storage.

STORAGE_DRIVER selects the backend: "local" writes under UPLOADS_DIR and
serves files from /uploads, "supabase" writes to a Supabase Storage bucket.
"""
import os
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from runtime_config import get_storage_driver_name
from security_utils import sanitize_filename_hint, redact_secrets
from supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE = 5 * 1024 * 1024  # 5MB

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}
ALLOWED_IMAGE_TYPES = set(MIME_EXTENSIONS)


class StorageError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def validate_image(data: bytes, mime: str, max_size: int = MAX_UPLOAD_SIZE) -> str:
    """Check type and size, returning the normalized MIME type"""
    mime = (mime or "").lower().strip()
    if mime not in ALLOWED_IMAGE_TYPES:
        raise StorageError(
            f"Unsupported file type: {mime or 'unknown'}. Allowed: png, jpeg, webp, gif",
            status_code=415,
        )
    if not data:
        raise StorageError("File is empty", status_code=400)
    if len(data) > max_size:
        raise StorageError(
            f"File too large. Maximum size is {max_size // (1024 * 1024)}MB",
            status_code=413,
        )
    return "image/jpeg" if mime == "image/jpg" else mime


def build_storage_path(mime: str, filename_hint: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """YYYY/MM/DD/<uuid>[-<hint>].<ext>"""
    now = now or datetime.now(timezone.utc)
    ext = MIME_EXTENSIONS.get(mime, "bin")
    hint = sanitize_filename_hint(filename_hint)
    name = uuid.uuid4().hex
    if hint:
        name = f"{name}-{hint}"
    return f"{now:%Y/%m/%d}/{name}.{ext}"


class StorageDriver:
    name = "base"

    def put_image(self, data: bytes, mime: str, filename_hint: Optional[str] = None) -> Dict[str, str]:
        mime = validate_image(data, mime)
        path = build_storage_path(mime, filename_hint)
        url = self._write(path, data, mime)
        logger.info(f"Stored image via {self.name} driver: {path} ({len(data)} bytes)")
        return {"url": url, "path": path}

    def _write(self, path: str, data: bytes, mime: str) -> str:
        raise NotImplementedError

    def delete(self, path: str) -> bool:
        raise NotImplementedError

    def health(self) -> Dict:
        raise NotImplementedError


class LocalStorageDriver(StorageDriver):
    name = "local"

    def __init__(self, root: Optional[str] = None, public_prefix: str = "/uploads"):
        self.root = Path(root or os.getenv("UPLOADS_DIR", "uploads")).resolve()
        self.public_prefix = public_prefix.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise StorageError("Invalid storage path", status_code=400)
        return target

    def _write(self, path: str, data: bytes, mime: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to write upload {path}: {str(e)}")
            raise StorageError("Failed to store file", status_code=500)
        return f"{self.public_prefix}/{path}"

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            target.unlink()
            return True
        except FileNotFoundError:
            return False

    def health(self) -> Dict:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            probe = self.root / f".health-{uuid.uuid4().hex}"
            probe.write_bytes(b"ok")
            probe.unlink()
            return {"ok": True, "details": f"Local uploads directory writable: {self.root}"}
        except OSError as e:
            return {"ok": False, "details": f"Local uploads directory not writable: {str(e)}"}


class SupabaseStorageDriver(StorageDriver):
    name = "supabase"

    def __init__(self, bucket: Optional[str] = None):
        self.bucket = bucket or os.getenv("SUPABASE_BUCKET", "public-images")

    def _storage(self):
        service_client = get_supabase_client().service_client
        if not service_client:
            raise StorageError("Uploads not configured", status_code=503)
        return service_client.storage

    def _write(self, path: str, data: bytes, mime: str) -> str:
        bucket = self._storage().from_(self.bucket)
        try:
            bucket.upload(
                path,
                data,
                file_options={"content-type": mime, "cache-control": "3600", "upsert": "false"},
            )
        except Exception as e:
            logger.error(f"Supabase upload failed for {path}: {self._redact(str(e))}")
            raise StorageError("Failed to upload file to storage", status_code=502)
        return bucket.get_public_url(path)

    def delete(self, path: str) -> bool:
        try:
            self._storage().from_(self.bucket).remove([path])
            return True
        except StorageError:
            raise
        except Exception as e:
            logger.warning(f"Supabase delete failed for {path}: {self._redact(str(e))}")
            return False

    def _redact(self, text: str) -> str:
        return redact_secrets(text, os.getenv("SUPABASE_SERVICE_KEY"), os.getenv("SUPABASE_ANON_KEY"))

    def health(self) -> Dict:
        try:
            storage = self._storage()
        except StorageError as e:
            return {"ok": False, "details": e.message}

        try:
            buckets = storage.list_buckets() or []
            names = {getattr(b, "name", None) or (b.get("name") if isinstance(b, dict) else None) for b in buckets}
            if self.bucket not in names:
                logger.info(f"Creating missing storage bucket '{self.bucket}'")
                storage.create_bucket(self.bucket, options={"public": True})

            probe_path = f"health/{uuid.uuid4().hex}.txt"
            bucket = storage.from_(self.bucket)
            bucket.upload(probe_path, b"ok", file_options={"content-type": "text/plain", "upsert": "true"})
            bucket.remove([probe_path])

            return {"ok": True, "details": f"Bucket '{self.bucket}' reachable and writable"}
        except Exception as e:
            return {"ok": False, "details": self._redact(f"Storage check failed: {str(e)}")}


_DRIVERS = {
    "local": LocalStorageDriver,
    "supabase": SupabaseStorageDriver,
}


def get_storage() -> StorageDriver:
    """Driver selected by STORAGE_DRIVER (defaults to local)"""
    name = get_storage_driver_name()
    driver_cls = _DRIVERS.get(name)
    if driver_cls is None:
        logger.warning(f"Unknown STORAGE_DRIVER '{name}', using local")
        driver_cls = LocalStorageDriver
    return driver_cls()


def storage_info() -> Dict:
    driver = get_storage()
    info = {"driver": driver.name}
    if isinstance(driver, SupabaseStorageDriver):
        info["bucket"] = driver.bucket
    else:
        info["root"] = str(driver.root)
    return info
