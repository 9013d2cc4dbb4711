"""Wallet ledger: the only code allowed to change wallet balances.

Every mutation is one guarded ``UPDATE ... WHERE <invariant still holds>``
statement, so two concurrent callers can never drive a balance negative or
lock more cash than exists, on any backend and across processes. A zero
rowcount means the guard rejected the change (or the wallet is missing).

Operations flush but never commit: the calling service commits the whole
unit of work (status change + audit event + balance change) or rolls it back.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecopoints.config import CASHOUT_SETTINGS
from ecopoints.errors import (
    InsufficientAvailableCash,
    InsufficientPoints,
    NotFound,
    OverUnlock,
    ValidationFailed,
)
from ecopoints.models.db.wallets import Wallet, CENT
from ecopoints.utils import get_logger

logger = get_logger(__name__)


def to_cents(amount: Decimal) -> int:
    quantized = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(quantized * 100)


def points_to_cash(points: int) -> Decimal:
    rate = Decimal(CASHOUT_SETTINGS["points_to_cash_rate"])
    return (Decimal(points) * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def get_wallet(session: Session, user_id: int) -> Optional[Wallet]:
    return (
        session.query(Wallet)
        .filter(Wallet.user_id == user_id)
        .execution_options(populate_existing=True)
        .one_or_none()
    )


def ensure_wallet(session: Session, user_id: int) -> Wallet:
    """Get or create the user's wallet (unique per user; a racing insert loads the winner)."""
    wallet = get_wallet(session, user_id)
    if wallet is not None:
        return wallet
    wallet = Wallet(user_id=user_id, points_balance=0, cash_balance_cents=0, locked_amount_cents=0)
    try:
        # Savepoint: losing the race must not discard the caller's unit of work
        with session.begin_nested():
            session.add(wallet)
        return wallet
    except IntegrityError:
        logger.info("Wallet created concurrently; loading the existing one", user_id=user_id)
        return _reload(session, user_id)


def _require_positive_points(n: int) -> None:
    if not isinstance(n, int) or isinstance(n, bool) or n <= 0:
        raise ValidationFailed("Point amounts must be positive integers", amount=n)


def _require_positive_cents(amount: Decimal) -> int:
    cents = to_cents(amount)
    if cents <= 0:
        raise ValidationFailed("Cash amounts must be positive", amount=str(amount))
    return cents


def _apply(session: Session, user_id: int, guard, values: dict) -> int:
    session.flush()
    stmt = (
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if guard is not None:
        stmt = stmt.where(guard)
    return session.execute(stmt).rowcount


def _reload(session: Session, user_id: int) -> Wallet:
    wallet = get_wallet(session, user_id)
    if wallet is None:
        raise NotFound(f"Wallet for user {user_id} not found", user_id=user_id)
    return wallet


def add_points(session: Session, user_id: int, n: int) -> Wallet:
    _require_positive_points(n)
    if not _apply(session, user_id, None, {"points_balance": Wallet.points_balance + n}):
        _reload(session, user_id)
    logger.debug("Points added", user_id=user_id, points=n)
    return _reload(session, user_id)


def deduct_points(session: Session, user_id: int, n: int) -> Wallet:
    _require_positive_points(n)
    if not _apply(session, user_id, Wallet.points_balance >= n, {"points_balance": Wallet.points_balance - n}):
        wallet = _reload(session, user_id)
        raise InsufficientPoints(
            f"Insufficient points: requested {n}, available {wallet.points_balance}",
            user_id=user_id,
            requested=n,
            available=wallet.points_balance,
        )
    logger.debug("Points deducted", user_id=user_id, points=n)
    return _reload(session, user_id)


def add_cash(session: Session, user_id: int, amount: Decimal) -> Wallet:
    cents = _require_positive_cents(amount)
    if not _apply(session, user_id, None, {"cash_balance_cents": Wallet.cash_balance_cents + cents}):
        _reload(session, user_id)
    logger.debug("Cash added", user_id=user_id, amount=str(amount))
    return _reload(session, user_id)


def lock_cash(session: Session, user_id: int, amount: Decimal) -> Wallet:
    cents = _require_positive_cents(amount)
    guard = (Wallet.cash_balance_cents - Wallet.locked_amount_cents) >= cents
    if not _apply(session, user_id, guard, {"locked_amount_cents": Wallet.locked_amount_cents + cents}):
        wallet = _reload(session, user_id)
        raise InsufficientAvailableCash(
            f"Insufficient available cash: requested {amount}, available {wallet.available_cash}",
            user_id=user_id,
            requested=str(amount),
            available=str(wallet.available_cash),
        )
    logger.debug("Cash locked", user_id=user_id, amount=str(amount))
    return _reload(session, user_id)


def unlock_cash(session: Session, user_id: int, amount: Decimal) -> Wallet:
    cents = _require_positive_cents(amount)
    guard = Wallet.locked_amount_cents >= cents
    if not _apply(session, user_id, guard, {"locked_amount_cents": Wallet.locked_amount_cents - cents}):
        wallet = _reload(session, user_id)
        raise OverUnlock(
            f"Cannot unlock {amount}; only {wallet.locked_amount} locked",
            user_id=user_id,
            requested=str(amount),
            locked=str(wallet.locked_amount),
        )
    logger.debug("Cash unlocked", user_id=user_id, amount=str(amount))
    return _reload(session, user_id)


def settle_locked_cash(session: Session, user_id: int, amount: Decimal) -> Wallet:
    """Pay out locked cash: locked and cash balances both drop by ``amount``."""
    cents = _require_positive_cents(amount)
    guard = (Wallet.locked_amount_cents >= cents) & (Wallet.cash_balance_cents >= cents)
    values = {
        "locked_amount_cents": Wallet.locked_amount_cents - cents,
        "cash_balance_cents": Wallet.cash_balance_cents - cents,
    }
    if not _apply(session, user_id, guard, values):
        wallet = _reload(session, user_id)
        raise OverUnlock(
            f"Cannot settle {amount}; only {wallet.locked_amount} locked",
            user_id=user_id,
            requested=str(amount),
            locked=str(wallet.locked_amount),
        )
    logger.debug("Locked cash settled", user_id=user_id, amount=str(amount))
    return _reload(session, user_id)


def credit_award(session: Session, user_id: int, points: int) -> Wallet:
    """Credit an approved submission: points plus their redeemable cash value."""
    wallet = add_points(session, user_id, points)
    cash = points_to_cash(points)
    if cash > 0:
        wallet = add_cash(session, user_id, cash)
    return wallet


__all__ = [
    "to_cents",
    "points_to_cash",
    "get_wallet",
    "ensure_wallet",
    "add_points",
    "deduct_points",
    "add_cash",
    "lock_cash",
    "unlock_cash",
    "settle_locked_cash",
    "credit_award",
]
