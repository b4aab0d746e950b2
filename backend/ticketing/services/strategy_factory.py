"""
Backend factory.
Configures which storage backend and image store the application uses.
"""

from typing import Optional

from ticketing.core.config import get_settings
from ticketing.core.logging import get_logger
from ticketing.db.session import get_session_factory
from ticketing.infrastructure.image_store import (
    CloudinaryImageStore,
    ImageStore,
    PassthroughImageStore,
)
from ticketing.stores.interfaces import Storage
from ticketing.stores.memory_store import MemoryStorage
from ticketing.stores.sql_store import SqlStorage

logger = get_logger(__name__)


def build_storage() -> Storage:
    """
    Build the configured storage backend.

    - sql: PostgreSQL through async SQLAlchemy (default)
    - memory: single-process dicts, for tests and local runs

    Selected via the STORAGE_BACKEND env var.
    """
    settings = get_settings()
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "memory":
        logger.warning("storage_backend_memory", message="State is not durable")
        return MemoryStorage()
    if backend == "sql":
        return SqlStorage(get_session_factory())
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


def build_image_store() -> ImageStore:
    """Cloudinary when credentials are configured, otherwise URL passthrough."""
    settings = get_settings()
    if settings.cloudinary_configured:
        return CloudinaryImageStore(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            folder=settings.CLOUDINARY_FOLDER,
            timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        )
    logger.warning("image_store_passthrough", message="Cloudinary not configured")
    return PassthroughImageStore()


# Singleton instances
_storage: Optional[Storage] = None
_image_store: Optional[ImageStore] = None


def get_storage() -> Storage:
    """Get storage backend singleton."""
    global _storage
    if _storage is None:
        _storage = build_storage()
    return _storage


def get_image_store() -> ImageStore:
    """Get image store singleton."""
    global _image_store
    if _image_store is None:
        _image_store = build_image_store()
    return _image_store


async def close_backends() -> None:
    """Release backend resources on shutdown."""
    global _storage, _image_store
    if _image_store is not None:
        await _image_store.close()
        _image_store = None
    if _storage is not None:
        await _storage.close()
        _storage = None
