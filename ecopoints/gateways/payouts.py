"""
Payout gateway registry: resolves a payout method to the gateway that serves it.
"""
from typing import Dict, Mapping, Optional

from ecopoints.config import PAYOUT_GATEWAY_SETTINGS
from ecopoints.errors import ValidationFailed
from ecopoints.models.db.enums import METHOD_GATEWAYS, PaymentGateway, PayoutMethod
from ecopoints.utils import get_logger
from .bank_transfer import BankTransferGateway
from .base import PayoutGateway
from .crypto import CryptoGateway
from .http import HttpPayoutGateway
from .paypal import PaypalGateway
from .stripe import StripeGateway
from .upi import UpiGateway


def _mock_gateways() -> Dict[PaymentGateway, PayoutGateway]:
    return {
        PaymentGateway.STRIPE: StripeGateway(),
        PaymentGateway.PAYPAL: PaypalGateway(),
        PaymentGateway.BANK_TRANSFER: BankTransferGateway(),
        PaymentGateway.CRYPTO: CryptoGateway(),
        PaymentGateway.UPI: UpiGateway(),
    }


def _http_gateways(endpoint: str) -> Dict[PaymentGateway, PayoutGateway]:
    api_key = PAYOUT_GATEWAY_SETTINGS.get("http_api_key")
    return {
        gw: HttpPayoutGateway(gw.value, endpoint, api_key=str(api_key) if api_key else None)
        for gw in PaymentGateway
    }


class PayoutGatewayService:
    """Holds one gateway per ``PaymentGateway``; mocks unless an HTTP endpoint is configured."""

    def __init__(self, gateways: Optional[Mapping[PaymentGateway, PayoutGateway]] = None):
        if gateways is None:
            endpoint = PAYOUT_GATEWAY_SETTINGS.get("http_endpoint")
            gateways = _http_gateways(str(endpoint)) if endpoint else _mock_gateways()
        self.gateways: Dict[PaymentGateway, PayoutGateway] = dict(gateways)
        self.logger = get_logger("payout_gateway_service")

    @staticmethod
    def gateway_name_for(method: PayoutMethod | str) -> PaymentGateway:
        try:
            return METHOD_GATEWAYS[PayoutMethod(method)]
        except (ValueError, KeyError):
            raise ValidationFailed(f"Unsupported payout method '{method}'", method=str(method)) from None

    def gateway_for(self, method: PayoutMethod | str) -> PayoutGateway:
        name = self.gateway_name_for(method)
        gateway = self.gateways.get(name)
        if gateway is None:
            self.logger.error("No gateway configured", gateway=name.value, configured=[g.value for g in self.gateways])
            raise ValidationFailed(f"Gateway '{name.value}' is not configured", gateway=name.value)
        return gateway

    def supported_gateways(self) -> list[str]:
        return sorted(g.value for g in self.gateways)
