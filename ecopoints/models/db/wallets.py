from __future__ import annotations
"""SQLAlchemy model for user wallets.

Cash amounts are persisted as integer cents so guarded ``UPDATE`` statements
(see ``ecopoints.services.wallet_ledger``) do exact arithmetic on every
backend; the ``Decimal`` properties are what the rest of the code reads.
"""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, BigInteger, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
from ecopoints.database import Base
from ecopoints.utils.time import utc_now

CENT = Decimal("0.01")


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


class Wallet(Base):
    __tablename__ = "wallets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    points_balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    cash_balance_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    locked_amount_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    user: Mapped["User"] = relationship("User", back_populates="wallet")

    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="wallet_points_non_negative"),
        CheckConstraint("cash_balance_cents >= 0", name="wallet_cash_non_negative"),
        CheckConstraint("locked_amount_cents >= 0", name="wallet_locked_non_negative"),
        CheckConstraint("locked_amount_cents <= cash_balance_cents", name="wallet_locked_within_cash"),
    )

    @property
    def cash_balance(self) -> Decimal:
        return cents_to_decimal(self.cash_balance_cents)

    @property
    def locked_amount(self) -> Decimal:
        return cents_to_decimal(self.locked_amount_cents)

    @property
    def available_cash(self) -> Decimal:
        return cents_to_decimal(self.cash_balance_cents - self.locked_amount_cents)
