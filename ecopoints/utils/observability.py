"""Observability helpers (correlation IDs, webhook signatures)."""
from __future__ import annotations
import hashlib
import hmac
import uuid
from typing import Mapping

REQUEST_ID_HEADER = "X-Request-ID"
SIGNATURE_HEADER = "X-Webhook-Signature"

def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Accepts both ``<hex>`` and ``sha256=<hex>`` signature formats."""
    if not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(signature, sign_payload(body, secret))

__all__ = ["ensure_request_id", "sign_payload", "verify_signature", "REQUEST_ID_HEADER", "SIGNATURE_HEADER"]
