"""
Pydantic schemas for wallets.
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict


class WalletRead(BaseModel):
    user_id: int
    points_balance: int
    cash_balance: Decimal
    locked_amount: Decimal
    available_cash: Decimal
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
