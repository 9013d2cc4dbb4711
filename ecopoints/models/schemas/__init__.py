from .base import ResponseBase, ErrorResponse
from .users import UserCreate, UserRead, UserCreated
from .collection_points import (
    CollectionPointCreate, CollectionPointUpdate, CollectionPointRead, NearestCollectionPoint
)
from .submissions import (
    MediaUploaded, SubmissionCreate, SubmissionRead, SubmissionDetail, SubmissionEventRead,
    ModerationDecision, RejectionRequest
)
from .wallets import WalletRead
from .cashouts import CashoutCreate, CashoutRead, PayoutTransactionRead
from .webhooks import PayoutWebhook

__all__ = [
    # Base
    "ResponseBase",
    "ErrorResponse",

    # Users
    "UserCreate",
    "UserRead",
    "UserCreated",

    # Collection points
    "CollectionPointCreate",
    "CollectionPointUpdate",
    "CollectionPointRead",
    "NearestCollectionPoint",

    # Submissions
    "MediaUploaded",
    "SubmissionCreate",
    "SubmissionRead",
    "SubmissionDetail",
    "SubmissionEventRead",
    "ModerationDecision",
    "RejectionRequest",

    # Wallets & cashouts
    "WalletRead",
    "CashoutCreate",
    "CashoutRead",
    "PayoutTransactionRead",
    "PayoutWebhook",
]
