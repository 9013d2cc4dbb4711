"""Domain error taxonomy.

Services raise these; the API layer renders them through a single exception
handler (see ``ecopoints.main``) using ``http_status`` and ``error_code``.
Transient errors are the only ones worth retrying.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class EcoPointsError(Exception):
    """Base class for every domain error."""

    category = "internal"
    http_status = 500
    error_code = "internal_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "category": self.category, "message": self.message}


# ------------------------------- Validation ------------------------------- #
class ValidationFailed(EcoPointsError):
    category = "validation"
    http_status = 422
    error_code = "validation_failed"


class LocationOutOfRange(ValidationFailed):
    error_code = "location_out_of_range"


class StaleOrFutureCapture(ValidationFailed):
    error_code = "stale_or_future_capture"


class BelowMinimum(ValidationFailed):
    error_code = "below_minimum"


class AboveMaximum(ValidationFailed):
    error_code = "above_maximum"


class RateLimitExceeded(EcoPointsError):
    category = "validation"
    http_status = 429
    error_code = "rate_limit_exceeded"


# -------------------------------- Conflict -------------------------------- #
class ConflictError(EcoPointsError):
    category = "conflict"
    http_status = 409
    error_code = "conflict"


class InvalidStateTransition(ConflictError):
    error_code = "invalid_state_transition"

    def __init__(self, entity: str, entity_id: Any, current: Optional[str], target: str):
        super().__init__(
            f"{entity} {entity_id} cannot move from '{current}' to '{target}'",
            entity=entity,
            entity_id=entity_id,
            current=current,
            target=target,
        )


class DuplicatePendingRequest(ConflictError):
    error_code = "duplicate_pending_request"


# -------------------------------- Resource -------------------------------- #
class ResourceError(EcoPointsError):
    category = "resource"
    http_status = 409
    error_code = "resource_error"


class InsufficientPoints(ResourceError):
    error_code = "insufficient_points"


class InsufficientAvailableCash(ResourceError):
    error_code = "insufficient_available_cash"


class OverUnlock(ResourceError):
    error_code = "over_unlock"


# ------------------------ Not found / permission -------------------------- #
class NotFound(EcoPointsError):
    category = "not_found"
    http_status = 404
    error_code = "not_found"


class PermissionDenied(EcoPointsError):
    category = "permission"
    http_status = 403
    error_code = "permission_denied"


# -------------------------------- Transient ------------------------------- #
class TransientError(EcoPointsError):
    category = "transient"
    http_status = 503
    error_code = "transient_failure"


class StorageUnavailable(TransientError):
    error_code = "storage_unavailable"


class GatewayUnavailable(TransientError):
    error_code = "gateway_unavailable"


class JobTimeout(TransientError):
    error_code = "job_timeout"


# ------------------------------ Non-transient ----------------------------- #
class MediaNotFound(NotFound):
    error_code = "media_not_found"


class MediaProbeError(EcoPointsError):
    category = "media"
    http_status = 422
    error_code = "media_probe_failed"


class GatewayRejected(EcoPointsError):
    category = "gateway"
    http_status = 502
    error_code = "gateway_rejected"


__all__ = [
    "EcoPointsError",
    "ValidationFailed",
    "LocationOutOfRange",
    "StaleOrFutureCapture",
    "BelowMinimum",
    "AboveMaximum",
    "RateLimitExceeded",
    "ConflictError",
    "InvalidStateTransition",
    "DuplicatePendingRequest",
    "ResourceError",
    "InsufficientPoints",
    "InsufficientAvailableCash",
    "OverUnlock",
    "NotFound",
    "PermissionDenied",
    "TransientError",
    "StorageUnavailable",
    "GatewayUnavailable",
    "JobTimeout",
    "MediaNotFound",
    "MediaProbeError",
    "GatewayRejected",
]
