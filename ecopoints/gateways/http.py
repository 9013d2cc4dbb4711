"""
Generic HTTP payout gateway.

Posts ``{reference, amount, method, destination_ref, gateway}`` as JSON to
``<endpoint>/payouts`` and expects ``{"gateway_txn_id": ..., "status": ...}``
back. 4xx answers are rejections; 5xx, timeouts and connection errors are
reported as unavailable so the caller can retry.
"""
import asyncio
from decimal import Decimal
from typing import Optional

import aiohttp

from ecopoints.config import PAYOUT_GATEWAY_SETTINGS
from ecopoints.errors import GatewayRejected, GatewayUnavailable
from ecopoints.utils import get_logger
from .base import PayoutGateway, PayoutResult


class HttpPayoutGateway(PayoutGateway):
    def __init__(
        self,
        name: str,
        endpoint: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.name = name
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds or float(PAYOUT_GATEWAY_SETTINGS["request_timeout_seconds"] or 15)
        self.logger = get_logger(f"gateway.http.{name}")

    async def initiate_payout(
        self,
        amount: Decimal,
        method: str,
        destination_ref: str,
        reference: str,
    ) -> PayoutResult:
        payload = {
            "reference": reference,
            "amount": str(amount),
            "method": method,
            "destination_ref": destination_ref,
            "gateway": self.name,
        }
        headers = {"Idempotency-Key": reference}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as client:
                async with client.post(f"{self.endpoint}/payouts", json=payload, headers=headers) as resp:
                    body = await resp.json(content_type=None)
                    status_code = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning("Payout request failed", reference=reference, error=str(e))
            raise GatewayUnavailable(f"{self.name} unreachable: {e}", gateway=self.name) from e
        except ValueError as e:
            raise GatewayUnavailable(f"{self.name} returned a non-JSON body", gateway=self.name) from e

        body = body if isinstance(body, dict) else {}
        if status_code >= 500:
            raise GatewayUnavailable(f"{self.name} answered {status_code}", gateway=self.name, status_code=status_code)
        if status_code >= 400:
            reason = body.get("error") or body.get("message") or f"HTTP {status_code}"
            raise GatewayRejected(str(reason), gateway=self.name, reference=reference, status_code=status_code)

        txn_id = body.get("gateway_txn_id") or body.get("id")
        if not txn_id:
            raise GatewayUnavailable(f"{self.name} response carried no transaction id", gateway=self.name)
        self.logger.info("Payout accepted", reference=reference, gateway_txn_id=txn_id)
        return PayoutResult(gateway_txn_id=str(txn_id), status=str(body.get("status", "processing")), raw_response=body)
