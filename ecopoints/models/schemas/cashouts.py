"""
Pydantic schemas for cashout requests and payout transactions.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from ..db.enums import CashoutStatus, PaymentGateway, PayoutMethod, TransactionStatus


class CashoutCreate(BaseModel):
    points: int = Field(gt=0)
    method: PayoutMethod
    destination_ref: str = Field(min_length=1, max_length=200, description="Account id, email, IBAN, wallet or UPI address")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "points": 1000,
            "method": "paypal",
            "destination_ref": "asha@example.com"
        }
    })


class PayoutTransactionRead(BaseModel):
    id: int
    gateway: PaymentGateway
    gateway_txn_id: Optional[str]
    status: TransactionStatus
    failure_reason: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CashoutRead(BaseModel):
    id: int
    reference: str
    user_id: int
    points_used: int
    cash_amount: Decimal
    method: PayoutMethod
    destination_ref: str
    status: CashoutStatus
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: datetime
    transaction: Optional[PayoutTransactionRead] = None

    model_config = ConfigDict(from_attributes=True)
