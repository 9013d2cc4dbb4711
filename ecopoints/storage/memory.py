"""In-process media storage for development and tests (single process only)."""
import threading
import time
import uuid
from typing import Dict

from ecopoints.errors import MediaNotFound
from .base import MediaStorage


class InMemoryStorage(MediaStorage):
    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def store(self, data: bytes, *, prefix: str = "media", extension: str = "") -> str:
        key = f"{prefix}/{uuid.uuid4().hex}{extension}"
        with self._lock:
            self._blobs[key] = bytes(data)
        return key

    def fetch(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[key]
            except KeyError:
                raise MediaNotFound(f"No media stored under '{key}'", key=key) from None

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    def signed_url(self, key: str, ttl_seconds: int) -> str:
        return f"memory://{key}?expires={int(time.time()) + int(ttl_seconds)}"

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)
