"""Central Enum definitions for core domain states.

Shared by DB models, schemas and services so state names never drift into
scattered string literals. ``status_enum`` builds the SQL column type: values
(not member names) are stored, and a CHECK constraint keeps the column inside
the enumerated set on backends without native enums.
"""
from __future__ import annotations
import enum

from sqlalchemy import Enum


def status_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        create_constraint=True,
        validate_strings=True,
    )


class UserRole(str, enum.Enum):
    TOURIST = "tourist"
    MODERATOR = "moderator"
    COUNCIL = "council"
    ADMIN = "admin"


class Capability(str, enum.Enum):
    SUBMIT = "submit"
    CASH_OUT = "cash_out"
    MODERATE = "moderate"
    MANAGE_PAYOUTS = "manage_payouts"
    MANAGE_COLLECTION_POINTS = "manage_collection_points"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.TOURIST: frozenset({Capability.SUBMIT, Capability.CASH_OUT}),
    UserRole.MODERATOR: frozenset({Capability.SUBMIT, Capability.CASH_OUT, Capability.MODERATE}),
    UserRole.COUNCIL: frozenset({
        Capability.SUBMIT,
        Capability.CASH_OUT,
        Capability.MODERATE,
        Capability.MANAGE_PAYOUTS,
    }),
    UserRole.ADMIN: frozenset(Capability),
}


def has_capability(role: UserRole, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())

# ----------------------------- Submissions ------------------------------ #

class SubmissionStatus(str, enum.Enum):
    QUEUED = "queued"
    AUTO_VERIFIED = "auto_verified"
    NEEDS_REVIEW = "needs_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class SubmissionEventType(str, enum.Enum):
    CREATED = "created"
    AUTO_VERIFIED = "auto_verified"
    NEEDS_REVIEW = "needs_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    POINTS_CREDITED = "points_credited"

# ------------------------------- Cashouts ------------------------------- #

class CashoutStatus(str, enum.Enum):
    PENDING = "pending"
    INITIATED = "initiated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class TransactionStatus(str, enum.Enum):
    INITIATED = "initiated"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentGateway(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"
    UPI = "upi"


class PayoutMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    CRYPTO = "crypto"
    GOOGLE_PAY = "google_pay"
    PHONEPE = "phonepe"
    PAYTM = "paytm"
    BHIM_UPI = "bhim_upi"
    AMAZON_PAY = "amazon_pay"
    WHATSAPP_PAY = "whatsapp_pay"
    NET_BANKING = "net_banking"


METHOD_GATEWAYS: dict[PayoutMethod, PaymentGateway] = {
    PayoutMethod.STRIPE: PaymentGateway.STRIPE,
    PayoutMethod.CARD: PaymentGateway.STRIPE,
    PayoutMethod.PAYPAL: PaymentGateway.PAYPAL,
    PayoutMethod.BANK_TRANSFER: PaymentGateway.BANK_TRANSFER,
    PayoutMethod.NET_BANKING: PaymentGateway.BANK_TRANSFER,
    PayoutMethod.CRYPTO: PaymentGateway.CRYPTO,
    PayoutMethod.GOOGLE_PAY: PaymentGateway.UPI,
    PayoutMethod.PHONEPE: PaymentGateway.UPI,
    PayoutMethod.PAYTM: PaymentGateway.UPI,
    PayoutMethod.BHIM_UPI: PaymentGateway.UPI,
    PayoutMethod.AMAZON_PAY: PaymentGateway.UPI,
    PayoutMethod.WHATSAPP_PAY: PaymentGateway.UPI,
}

__all__ = [
    "status_enum",
    "UserRole",
    "Capability",
    "ROLE_CAPABILITIES",
    "has_capability",
    "SubmissionStatus",
    "SubmissionEventType",
    "CashoutStatus",
    "TransactionStatus",
    "PaymentGateway",
    "PayoutMethod",
    "METHOD_GATEWAYS",
]
