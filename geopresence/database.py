import logging
from typing import Optional

from fastapi import Request

from geopresence.config import settings
from geopresence.storage import JsonFileStorage, SqlStorage, StorageAdapter

logger = logging.getLogger(__name__)


def build_storage(backend: Optional[str] = None) -> StorageAdapter:
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == "json":
        logger.info("Using JSON file storage at %s", settings.DB_PATH)
        return JsonFileStorage(settings.DB_PATH)
    if backend == "sql":
        logger.info("Using SQL storage")
        return SqlStorage(settings.DATABASE_URL, echo=settings.DEBUG)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend!r}")


def get_storage(request: Request) -> StorageAdapter:
    return request.app.state.storage
