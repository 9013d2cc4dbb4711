"""
Filesystem-backed media storage with HMAC-signed read URLs.
"""
import os
import time
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from ecopoints.errors import MediaNotFound, StorageUnavailable, ValidationFailed
from ecopoints.utils import get_logger
from ecopoints.utils.observability import sign_payload, verify_signature
from .base import MediaStorage

logger = get_logger(__name__)


class LocalFileStorage(MediaStorage):
    """Stores each blob as a file under ``root_dir/<prefix>/<uuid><ext>``."""

    def __init__(self, root_dir: str, *, public_base_url: str, signing_secret: str):
        self.root = Path(root_dir).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = signing_secret
        self.logger = get_logger("storage.local")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValidationFailed("Invalid storage key", key=key)
        return path

    def store(self, data: bytes, *, prefix: str = "media", extension: str = "") -> str:
        key = f"{prefix}/{uuid.uuid4().hex}{extension}"
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".part")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            self.logger.error("Failed to store blob", key=key, error=str(e))
            raise StorageUnavailable(f"Could not store blob: {e}", key=key) from e
        self.logger.debug("Blob stored", key=key, size_bytes=len(data))
        return key

    def fetch(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise MediaNotFound(f"No media stored under '{key}'", key=key) from e
        except OSError as e:
            raise StorageUnavailable(f"Could not read blob: {e}", key=key) from e

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Could not delete blob: {e}", key=key) from e

    def signed_url(self, key: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + int(ttl_seconds)
        signature = sign_payload(f"{key}:{expires}".encode(), self._secret)
        return f"{self.public_base_url}/{key}?{urlencode({'expires': expires, 'signature': signature})}"

    def verify_signed(self, key: str, expires: int, signature: Optional[str]) -> bool:
        if expires < int(time.time()):
            return False
        return verify_signature(f"{key}:{expires}".encode(), signature, self._secret)
