"""
PayPal payouts (mock). Destinations are PayPal account emails.
"""
from .base import MockPayoutGateway


class PaypalGateway(MockPayoutGateway):
    name = "paypal"
    txn_prefix = "PAYOUT"

    def validate_destination(self, destination_ref):
        local, _, domain = destination_ref.partition("@")
        if not local or "." not in domain:
            return "Destination must be a PayPal account email"
        return None
