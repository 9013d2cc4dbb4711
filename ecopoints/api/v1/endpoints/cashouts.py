"""
Cashout endpoints: request, track, cancel and (for payout managers) initiate.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, status, Request, Query
from sqlalchemy.orm import Session

from ecopoints.api.deps import get_db, get_current_user, require_capability, get_pagination_params, get_gateways
from ecopoints.gateways import PayoutGatewayService
from ecopoints.models.db import User
from ecopoints.models.db.enums import Capability, CashoutStatus, has_capability
from ecopoints.models.schemas.cashouts import CashoutCreate, CashoutRead
from ecopoints.services import cashout_service
from ecopoints.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/",
    response_model=CashoutRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request a cashout",
    description="Converts points to cash at the configured rate and locks that cash until the payout settles"
)
async def create_cashout(
    payload: CashoutCreate,
    request: Request,
    current_user: User = Depends(require_capability(Capability.CASH_OUT)),
    db: Session = Depends(get_db),
) -> CashoutRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info(
        "Cashout requested",
        user_id=current_user.id,
        points=payload.points,
        method=payload.method.value,
        request_id=request_id
    )
    cashout = cashout_service.create_cashout(
        db, current_user.id, payload.points, payload.method, payload.destination_ref
    )
    return CashoutRead.model_validate(cashout)


@router.get(
    "/",
    response_model=List[CashoutRead],
    summary="List my cashouts"
)
async def list_my_cashouts(
    status_filter: Optional[CashoutStatus] = Query(None, alias="status"),
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[CashoutRead]:
    rows = cashout_service.list_cashouts(db, current_user.id, status=status_filter, **pagination)
    return [CashoutRead.model_validate(c) for c in rows]


@router.get(
    "/admin",
    response_model=List[CashoutRead],
    summary="List all cashouts (payout managers)"
)
async def list_all_cashouts(
    status_filter: Optional[CashoutStatus] = Query(None, alias="status"),
    user_id: Optional[int] = Query(None, gt=0),
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(require_capability(Capability.MANAGE_PAYOUTS)),
    db: Session = Depends(get_db),
) -> List[CashoutRead]:
    rows = cashout_service.list_cashouts(db, user_id, status=status_filter, **pagination)
    return [CashoutRead.model_validate(c) for c in rows]


@router.get(
    "/{cashout_id}",
    response_model=CashoutRead,
    summary="Cashout detail"
)
async def get_cashout(
    cashout_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CashoutRead:
    cashout = cashout_service.get_cashout(
        db, cashout_id, current_user.id, elevated=has_capability(current_user.role, Capability.MANAGE_PAYOUTS)
    )
    return CashoutRead.model_validate(cashout)


@router.post(
    "/{cashout_id}/initiate",
    response_model=CashoutRead,
    summary="Send a pending cashout to its payout gateway"
)
async def initiate_cashout(
    cashout_id: int,
    request: Request,
    current_user: User = Depends(require_capability(Capability.MANAGE_PAYOUTS)),
    db: Session = Depends(get_db),
    gateways: PayoutGatewayService = Depends(get_gateways),
) -> CashoutRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    cashout = await cashout_service.initiate_cashout(db, cashout_id, current_user.id, gateways)
    logger.info(
        "Cashout initiation finished",
        cashout_id=cashout_id,
        status=cashout.status.value,
        actor_id=current_user.id,
        request_id=request_id
    )
    return CashoutRead.model_validate(cashout)


@router.post(
    "/{cashout_id}/cancel",
    response_model=CashoutRead,
    summary="Cancel a pending cashout"
)
async def cancel_cashout(
    cashout_id: int,
    current_user: User = Depends(require_capability(Capability.CASH_OUT)),
    db: Session = Depends(get_db),
) -> CashoutRead:
    cashout = cashout_service.cancel_cashout(db, cashout_id, current_user.id)
    return CashoutRead.model_validate(cashout)
