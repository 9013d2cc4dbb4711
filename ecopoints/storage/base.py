from abc import ABC, abstractmethod


class MediaStorage(ABC):
    """Blob store for uploaded videos and generated thumbnails.

    Implementations raise ``StorageUnavailable`` for retryable failures and
    ``MediaNotFound`` for keys that do not exist.
    """

    @abstractmethod
    def store(self, data: bytes, *, prefix: str = "media", extension: str = "") -> str:
        """Persist ``data`` and return its key."""

    @abstractmethod
    def fetch(self, key: str) -> bytes:
        """Return the bytes stored under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is not an error."""

    @abstractmethod
    def signed_url(self, key: str, ttl_seconds: int) -> str:
        """Time-limited URL for reading ``key``."""
