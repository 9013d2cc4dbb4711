from .users import User
from .wallets import Wallet
from .collection_points import CollectionPoint
from .submissions import Submission, SubmissionEvent
from .cashouts import CashoutRequest, PayoutTransaction, OPEN_CASHOUT_STATUSES
from .enums import (
    UserRole,
    Capability,
    SubmissionStatus,
    SubmissionEventType,
    CashoutStatus,
    TransactionStatus,
    PaymentGateway,
    PayoutMethod,
)

__all__ = [
    "User",
    "Wallet",
    "CollectionPoint",
    "Submission",
    "SubmissionEvent",
    "CashoutRequest",
    "PayoutTransaction",
    "OPEN_CASHOUT_STATUSES",
    "UserRole",
    "Capability",
    "SubmissionStatus",
    "SubmissionEventType",
    "CashoutStatus",
    "TransactionStatus",
    "PaymentGateway",
    "PayoutMethod",
]
