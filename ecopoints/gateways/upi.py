"""
UPI payouts (mock). Covers Google Pay, PhonePe, Paytm, BHIM and friends;
all of them settle to a virtual payment address such as ``name@bank``.
"""
from .base import MockPayoutGateway


class UpiGateway(MockPayoutGateway):
    name = "upi"
    txn_prefix = "upi"

    def validate_destination(self, destination_ref):
        handle, _, provider = destination_ref.partition("@")
        if not handle or not provider or "." in provider:
            return "Destination must be a UPI address like name@bank"
        return None
