"""
Wallet endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ecopoints.api.deps import get_db, get_current_user
from ecopoints.models.db import User
from ecopoints.models.schemas.wallets import WalletRead
from ecopoints.services import wallet_ledger

router = APIRouter()


@router.get(
    "/me",
    response_model=WalletRead,
    summary="Current user's wallet",
    description="Points, cash balance, cash locked by open cashouts and the cash still available"
)
async def get_my_wallet(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> WalletRead:
    wallet = wallet_ledger.get_wallet(db, current_user.id)
    if wallet is None:
        wallet = wallet_ledger.ensure_wallet(db, current_user.id)
        db.commit()
        db.refresh(wallet)
    return WalletRead.model_validate(wallet)
