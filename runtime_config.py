"""
Runtime configuration that can change while the server is running.

The coming-soon flag starts from MAINTENANCE_MODE and is flipped by the admin
endpoints. Persistence to system_settings is handled by settings_service.
"""
import os
import logging
from threading import Lock

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}

_lock = Lock()
_coming_soon = os.getenv("MAINTENANCE_MODE", "false").strip().lower() in _TRUTHY


def get_coming_soon() -> bool:
    return _coming_soon


def set_coming_soon(enabled: bool) -> bool:
    """Set the coming-soon flag and return the new value"""
    global _coming_soon
    with _lock:
        if _coming_soon != enabled:
            logger.info(f"Coming soon mode {'enabled' if enabled else 'disabled'}")
        _coming_soon = bool(enabled)
    return _coming_soon


def reset_from_env() -> bool:
    """Re-read MAINTENANCE_MODE (used at startup and by tests)"""
    enabled = os.getenv("MAINTENANCE_MODE", "false").strip().lower() in _TRUTHY
    return set_coming_soon(enabled)


def get_app_version() -> str:
    return os.getenv("APP_VERSION", "2.0.0")


def get_storage_driver_name() -> str:
    return os.getenv("STORAGE_DRIVER", "local").strip().lower() or "local"
