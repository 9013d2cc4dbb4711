"""
Crypto wallet payouts (mock).
"""
from .base import MockPayoutGateway


class CryptoGateway(MockPayoutGateway):
    name = "crypto"
    txn_prefix = "0x"

    def validate_destination(self, destination_ref):
        if len(destination_ref) < 26 or not destination_ref.isalnum():
            return "Destination must be a wallet address"
        return None
