"""
Pydantic schema for inbound payout gateway notifications.
"""
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict


class PayoutWebhook(BaseModel):
    reference: str = Field(min_length=1, max_length=64)
    status: str = Field(min_length=1, max_length=50, description="Gateway status, e.g. succeeded, failed, processing")
    gateway_txn_id: Optional[str] = Field(None, max_length=200)
    raw_payload: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "reference": "co_5f0a3c1e9b8d4f7a8c6e2d1b0a9f8e7d",
            "status": "succeeded",
            "gateway_txn_id": "PAYOUT_8c1f2e3d4b5a6978",
            "raw_payload": {"event": "payout.paid"}
        }
    })
