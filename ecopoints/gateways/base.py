"""
Payout gateway interface and shared mock behaviour.
"""
import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from ecopoints.config import MOCK_FAILURE_RATE, PAYOUT_GATEWAY_SETTINGS
from ecopoints.errors import GatewayRejected, GatewayUnavailable
from ecopoints.utils import get_logger


@dataclass(slots=True)
class PayoutResult:
    gateway_txn_id: str
    status: str = "processing"
    raw_response: Dict[str, Any] = field(default_factory=dict)


class PayoutGateway(ABC):
    name: str = "gateway"

    @abstractmethod
    async def initiate_payout(
        self,
        amount: Decimal,
        method: str,
        destination_ref: str,
        reference: str,
    ) -> PayoutResult:
        """Hand a payout to the provider.

        Raises ``GatewayRejected`` when the provider refuses the payout outright
        and ``GatewayUnavailable`` when it could not be reached (safe to retry).
        """


class MockPayoutGateway(PayoutGateway):
    """Simulated provider: random latency, occasional outages, destination checks.

    Subclasses only describe what a valid destination looks like. Settlement is
    reported later through the webhook endpoint, as a real provider would.
    """

    txn_prefix: str = "txn"

    def __init__(self, failure_rate: Optional[float] = None, rng: Optional[random.Random] = None):
        self.failure_rate = MOCK_FAILURE_RATE if failure_rate is None else failure_rate
        self.rng = rng or random.Random()
        self.logger = get_logger(f"gateway.{self.name}")

    def validate_destination(self, destination_ref: str) -> Optional[str]:
        """Return a rejection reason, or None when the destination looks usable."""
        return None

    async def initiate_payout(
        self,
        amount: Decimal,
        method: str,
        destination_ref: str,
        reference: str,
    ) -> PayoutResult:
        self.logger.info("Initiating payout (mock)", reference=reference, amount=amount, method=method)

        low = float(PAYOUT_GATEWAY_SETTINGS["mock_latency_min_seconds"] or 0)
        high = float(PAYOUT_GATEWAY_SETTINGS["mock_latency_max_seconds"] or 0)
        if high > 0:
            await asyncio.sleep(self.rng.uniform(low, max(low, high)))

        if self.rng.random() < self.failure_rate:
            self.logger.warning("Simulated gateway outage", reference=reference)
            raise GatewayUnavailable(f"{self.name} is temporarily unavailable", gateway=self.name)

        reason = self.validate_destination(destination_ref)
        if reason:
            self.logger.warning("Payout rejected (mock)", reference=reference, reason=reason)
            raise GatewayRejected(reason, gateway=self.name, reference=reference)

        txn_id = f"{self.txn_prefix}_{self.rng.getrandbits(64):016x}"
        return PayoutResult(
            gateway_txn_id=txn_id,
            status="processing",
            raw_response={"id": txn_id, "reference": reference, "amount": str(amount), "mock": True},
        )
