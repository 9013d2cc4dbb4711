"""
Stripe payouts (mock). Cards and Stripe-connected accounts.
"""
from .base import MockPayoutGateway


class StripeGateway(MockPayoutGateway):
    name = "stripe"
    txn_prefix = "po"

    def validate_destination(self, destination_ref):
        if not destination_ref.startswith(("acct_", "card_", "ba_")):
            return "Destination must be a Stripe account, card or bank account id"
        return None
