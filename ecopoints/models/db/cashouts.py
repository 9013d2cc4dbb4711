from __future__ import annotations
"""SQLAlchemy models for cashout requests and their payout transactions."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, String, Text, Numeric, DateTime, ForeignKey, JSON, Index, CheckConstraint, text
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
from ecopoints.database import Base
from ecopoints.utils.time import utc_now
from .enums import CashoutStatus, PayoutMethod, PaymentGateway, TransactionStatus, status_enum

OPEN_CASHOUT_STATUSES = (CashoutStatus.PENDING, CashoutStatus.INITIATED)


class CashoutRequest(Base):
    __tablename__ = "cashout_requests"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Opaque reference handed to gateways and echoed back by webhooks
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    points_used: Mapped[int] = mapped_column(Integer, nullable=False)
    cash_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[PayoutMethod] = mapped_column(status_enum(PayoutMethod, "payout_method"), nullable=False)
    destination_ref: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[CashoutStatus] = mapped_column(
        status_enum(CashoutStatus, "cashout_status"), default=CashoutStatus.PENDING, nullable=False, index=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    user: Mapped["User"] = relationship("User")
    transaction: Mapped["PayoutTransaction | None"] = relationship(
        "PayoutTransaction", back_populates="cashout_request", uselist=False
    )

    __table_args__ = (
        CheckConstraint("points_used > 0", name="cashout_points_positive"),
        CheckConstraint("cash_amount > 0", name="cashout_amount_positive"),
        # One open (pending or initiated) request per user
        Index(
            "uq_cashout_one_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'initiated')"),
            postgresql_where=text("status IN ('pending', 'initiated')"),
        ),
    )


class PayoutTransaction(Base):
    __tablename__ = "payout_transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    cashout_request_id: Mapped[int] = mapped_column(Integer, ForeignKey("cashout_requests.id"), nullable=False, unique=True)
    gateway: Mapped[PaymentGateway] = mapped_column(status_enum(PaymentGateway, "payment_gateway"), nullable=False)
    gateway_txn_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    status: Mapped[TransactionStatus] = mapped_column(
        status_enum(TransactionStatus, "transaction_status"), default=TransactionStatus.INITIATED, nullable=False, index=True
    )
    raw_webhook: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    cashout_request: Mapped["CashoutRequest"] = relationship("CashoutRequest", back_populates="transaction")
