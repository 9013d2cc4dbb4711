"""
Bank transfers and net banking (mock). Destinations are IBAN-like account numbers.
"""
from .base import MockPayoutGateway


class BankTransferGateway(MockPayoutGateway):
    name = "bank_transfer"
    txn_prefix = "bt"

    def validate_destination(self, destination_ref):
        compact = destination_ref.replace(" ", "")
        if not (8 <= len(compact) <= 34) or not compact.isalnum():
            return "Destination must be an 8-34 character account number"
        return None
