"""
Inbound payout gateway notifications.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ecopoints import config
from ecopoints.api.deps import get_db
from ecopoints.models.db.enums import PaymentGateway
from ecopoints.models.schemas.base import ResponseBase
from ecopoints.models.schemas.webhooks import PayoutWebhook
from ecopoints.services import cashout_service
from ecopoints.utils import get_logger
from ecopoints.utils.observability import SIGNATURE_HEADER, verify_signature

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/{gateway}",
    response_model=ResponseBase,
    summary="Payout status notification",
    description="Idempotent: redelivering a notification that was already applied is acknowledged without effect"
)
async def receive_webhook(
    gateway: str,
    request: Request,
    db: Session = Depends(get_db),
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        gateway_name = PaymentGateway(gateway.lower()).value
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown gateway '{gateway}'")

    body = await request.body()
    secret = config.WEBHOOK_SECRETS.get(gateway_name, "")
    if secret and not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Webhook signature mismatch", gateway=gateway_name, request_id=request_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = PayoutWebhook.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False))

    logger.info(
        "Webhook received",
        gateway=gateway_name,
        reference=payload.reference,
        gateway_status=payload.status,
        request_id=request_id
    )
    result = cashout_service.handle_webhook(
        db,
        payload.reference,
        payload.status,
        payload.gateway_txn_id,
        payload.raw_payload,
        payload.failure_reason,
        gateway=gateway_name,
    )
    message = "Webhook applied" if result.get("applied") else "Webhook acknowledged"
    return ResponseBase(success=True, message=message, data=result)
