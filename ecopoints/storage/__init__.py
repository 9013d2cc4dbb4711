"""
Media storage backends.
"""
from ecopoints.config import STORAGE_SETTINGS
from ecopoints.utils import get_logger
from .base import MediaStorage
from .local import LocalFileStorage
from .memory import InMemoryStorage

logger = get_logger(__name__)


def create_storage() -> MediaStorage:
    """Build the configured storage backend."""
    backend = str(STORAGE_SETTINGS.get("backend", "local"))
    if backend == "memory":
        logger.info("Using in-memory media storage")
        return InMemoryStorage()
    logger.info("Using local file media storage", root_dir=STORAGE_SETTINGS["root_dir"])
    return LocalFileStorage(
        str(STORAGE_SETTINGS["root_dir"]),
        public_base_url=str(STORAGE_SETTINGS["public_base_url"]),
        signing_secret=str(STORAGE_SETTINGS["signing_secret"]),
    )


__all__ = ["MediaStorage", "LocalFileStorage", "InMemoryStorage", "create_storage"]
