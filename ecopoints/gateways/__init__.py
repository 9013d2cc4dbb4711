"""
Payout gateways package.
Exports the gateway interface, the mock providers and the registry.
"""
from .base import PayoutGateway, PayoutResult, MockPayoutGateway
from .stripe import StripeGateway
from .paypal import PaypalGateway
from .bank_transfer import BankTransferGateway
from .crypto import CryptoGateway
from .upi import UpiGateway
from .http import HttpPayoutGateway
from .payouts import PayoutGatewayService

__all__ = [
    "PayoutGateway",
    "PayoutResult",
    "MockPayoutGateway",
    "StripeGateway",
    "PaypalGateway",
    "BankTransferGateway",
    "CryptoGateway",
    "UpiGateway",
    "HttpPayoutGateway",
    "PayoutGatewayService",
]
