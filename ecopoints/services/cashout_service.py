"""Cashout state machine.

Request states::

    pending   -> initiated | canceled | failed
    initiated -> succeeded | failed
    succeeded, failed, canceled: terminal

Cash is locked when the request is created and stays locked until the
request reaches a terminal state: success settles it (and spends the points),
every other outcome unlocks it. Like submissions, each status change is a
compare-and-set update committed with its wallet effects, so a webhook racing
a cancel or a duplicate webhook can only ever apply once.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecopoints.config import CASHOUT_SETTINGS
from ecopoints.errors import (
    AboveMaximum,
    BelowMinimum,
    DuplicatePendingRequest,
    EcoPointsError,
    GatewayRejected,
    GatewayUnavailable,
    InsufficientPoints,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from ecopoints.gateways.payouts import PayoutGatewayService
from ecopoints.models.db.cashouts import OPEN_CASHOUT_STATUSES, CashoutRequest, PayoutTransaction
from ecopoints.models.db.enums import METHOD_GATEWAYS, CashoutStatus, PayoutMethod, TransactionStatus
from ecopoints.services import wallet_ledger
from ecopoints.utils import get_logger, log_business_event
from ecopoints.utils.backoff import compute_backoff_seconds, max_attempts
from ecopoints.utils.circuit_breaker import GATEWAY_CIRCUIT_BREAKER
from ecopoints.utils.time import utc_now

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[CashoutStatus, frozenset[CashoutStatus]] = {
    CashoutStatus.PENDING: frozenset({CashoutStatus.INITIATED, CashoutStatus.CANCELED, CashoutStatus.FAILED}),
    CashoutStatus.INITIATED: frozenset({CashoutStatus.SUCCEEDED, CashoutStatus.FAILED}),
    CashoutStatus.SUCCEEDED: frozenset(),
    CashoutStatus.FAILED: frozenset(),
    CashoutStatus.CANCELED: frozenset(),
}

TERMINAL_STATUSES = (CashoutStatus.SUCCEEDED, CashoutStatus.FAILED, CashoutStatus.CANCELED)
_OPEN_TXN_STATUSES = (TransactionStatus.INITIATED, TransactionStatus.PROCESSING)

# Gateway vocabulary -> normalized webhook outcome
WEBHOOK_STATUS_MAP: Dict[str, TransactionStatus] = {
    "succeeded": TransactionStatus.SUCCEEDED,
    "success": TransactionStatus.SUCCEEDED,
    "completed": TransactionStatus.SUCCEEDED,
    "paid": TransactionStatus.SUCCEEDED,
    "settled": TransactionStatus.SUCCEEDED,
    "failed": TransactionStatus.FAILED,
    "failure": TransactionStatus.FAILED,
    "declined": TransactionStatus.FAILED,
    "rejected": TransactionStatus.FAILED,
    "returned": TransactionStatus.FAILED,
    "cancelled": TransactionStatus.CANCELLED,
    "canceled": TransactionStatus.CANCELLED,
    "voided": TransactionStatus.CANCELLED,
    "reversed": TransactionStatus.CANCELLED,
    "processing": TransactionStatus.PROCESSING,
    "in_transit": TransactionStatus.PROCESSING,
    "pending": TransactionStatus.PROCESSING,
}

# Request status each terminal webhook outcome leads to
_REQUEST_STATUS_FOR = {
    TransactionStatus.SUCCEEDED: CashoutStatus.SUCCEEDED,
    TransactionStatus.FAILED: CashoutStatus.FAILED,
    TransactionStatus.CANCELLED: CashoutStatus.FAILED,
}


def normalize_gateway_status(raw_status: str) -> Optional[TransactionStatus]:
    return WEBHOOK_STATUS_MAP.get((raw_status or "").strip().lower())


def _load(session: Session, cashout_id: int) -> CashoutRequest:
    cashout = (
        session.query(CashoutRequest)
        .filter(CashoutRequest.id == cashout_id)
        .execution_options(populate_existing=True)
        .one_or_none()
    )
    if cashout is None:
        raise NotFound(f"Cashout request {cashout_id} not found", cashout_id=cashout_id)
    return cashout


def _load_by_reference(session: Session, reference: str) -> CashoutRequest:
    cashout = (
        session.query(CashoutRequest)
        .filter(CashoutRequest.reference == reference)
        .execution_options(populate_existing=True)
        .one_or_none()
    )
    if cashout is None:
        raise NotFound(f"No cashout request with reference '{reference}'", reference=reference)
    return cashout


def _transition(
    session: Session,
    cashout: CashoutRequest,
    target: CashoutStatus,
    *,
    values: Optional[Dict[str, Any]] = None,
) -> CashoutRequest:
    """Guarded status change inside the caller's unit of work (no commit)."""
    current = cashout.status
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition("CashoutRequest", cashout.id, current.value, target.value)

    session.flush()
    stmt = (
        update(CashoutRequest)
        .where(CashoutRequest.id == cashout.id, CashoutRequest.status == current)
        .values(status=target, updated_at=utc_now(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount != 1:
        session.rollback()
        latest = session.get(CashoutRequest, cashout.id, populate_existing=True)
        raise InvalidStateTransition(
            "CashoutRequest", cashout.id, latest.status.value if latest else None, target.value
        )
    session.refresh(cashout)
    return cashout


def _update_transaction(session: Session, cashout_id: int, **values: Any) -> int:
    """Update the payout transaction unless it already reached a final status."""
    stmt = (
        update(PayoutTransaction)
        .where(
            PayoutTransaction.cashout_request_id == cashout_id,
            PayoutTransaction.status.in_(_OPEN_TXN_STATUSES),
        )
        .values(updated_at=utc_now(), **values)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount


def _refresh_all(session: Session, cashout: CashoutRequest) -> CashoutRequest:
    session.refresh(cashout)
    if cashout.transaction is not None:
        session.refresh(cashout.transaction)
    return cashout


# --------------------------------- Create --------------------------------- #
def create_cashout(
    session: Session,
    user_id: int,
    points: int,
    method: PayoutMethod | str,
    destination_ref: str,
) -> CashoutRequest:
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise ValidationFailed("Points must be a positive integer", points=points)
    try:
        method = PayoutMethod(method)
    except ValueError:
        raise ValidationFailed(f"Unsupported payout method '{method}'", method=str(method)) from None
    destination_ref = (destination_ref or "").strip()
    if not destination_ref:
        raise ValidationFailed("A payout destination is required")

    cash_amount = wallet_ledger.points_to_cash(points)
    minimum = CASHOUT_SETTINGS["min_cash_amount"]
    maximum = CASHOUT_SETTINGS["max_cash_amount"]
    if cash_amount < minimum:
        raise BelowMinimum(
            f"Cashout of {cash_amount} is below the minimum of {minimum}",
            cash_amount=str(cash_amount),
            minimum=str(minimum),
        )
    if cash_amount > maximum:
        raise AboveMaximum(
            f"Cashout of {cash_amount} exceeds the maximum of {maximum}",
            cash_amount=str(cash_amount),
            maximum=str(maximum),
        )

    wallet = wallet_ledger.ensure_wallet(session, user_id)
    if wallet.points_balance < points:
        raise InsufficientPoints(
            f"Insufficient points: requested {points}, available {wallet.points_balance}",
            user_id=user_id,
            requested=points,
            available=wallet.points_balance,
        )

    open_request = (
        session.query(CashoutRequest.id)
        .filter(CashoutRequest.user_id == user_id, CashoutRequest.status.in_(OPEN_CASHOUT_STATUSES))
        .first()
    )
    if open_request is not None:
        raise DuplicatePendingRequest(
            "A cashout request is already in progress",
            user_id=user_id,
            cashout_id=open_request.id,
        )

    try:
        wallet_ledger.lock_cash(session, user_id, cash_amount)
        cashout = CashoutRequest(
            reference=f"co_{uuid.uuid4().hex}",
            user_id=user_id,
            points_used=points,
            cash_amount=cash_amount,
            method=method,
            destination_ref=destination_ref,
            status=CashoutStatus.PENDING,
        )
        session.add(cashout)
        session.flush()
        session.add(
            PayoutTransaction(
                cashout_request_id=cashout.id,
                gateway=METHOD_GATEWAYS[method],
                status=TransactionStatus.INITIATED,
            )
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise DuplicatePendingRequest("A cashout request is already in progress", user_id=user_id) from None
    except EcoPointsError:
        session.rollback()
        raise

    session.refresh(cashout)
    log_business_event(
        "cashout_requested",
        {
            "cashout_id": cashout.id,
            "user_id": user_id,
            "points": points,
            "cash_amount": str(cash_amount),
            "method": method.value,
        },
    )
    return cashout


# -------------------------------- Initiate -------------------------------- #
def _fail_initiated(
    session: Session, cashout: CashoutRequest, reason: str, gateway_txn_id: Optional[str] = None
) -> CashoutRequest:
    txn_values: Dict[str, Any] = {"status": TransactionStatus.FAILED, "failure_reason": reason, "processed_at": utc_now()}
    if gateway_txn_id:
        txn_values["gateway_txn_id"] = gateway_txn_id
    try:
        _transition(session, cashout, CashoutStatus.FAILED, values={"failure_reason": reason})
        wallet_ledger.unlock_cash(session, cashout.user_id, cashout.cash_amount)
        _update_transaction(session, cashout.id, **txn_values)
        session.commit()
    except InvalidStateTransition:
        # A webhook settled the request first
        logger.info("Cashout resolved before initiation failure was recorded", cashout_id=cashout.id)
        return _refresh_all(session, cashout)
    except EcoPointsError:
        session.rollback()
        raise
    logger.warning("Cashout initiation failed", cashout_id=cashout.id, reason=reason)
    log_business_event("cashout_failed", {"cashout_id": cashout.id, "user_id": cashout.user_id, "reason": reason})
    return _refresh_all(session, cashout)


async def initiate_cashout(
    session: Session,
    cashout_id: int,
    actor_id: Optional[int],
    gateways: PayoutGatewayService,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> CashoutRequest:
    """Claim a pending request and hand it to its payout gateway.

    The claim (``pending -> initiated``) is committed before the gateway call,
    so a cancel arriving meanwhile is refused. Transient gateway errors are
    retried with backoff while the gateway's circuit is closed.
    """
    cashout = _load(session, cashout_id)
    gateway = gateways.gateway_for(cashout.method)
    breaker_key = gateway.name

    _transition(session, cashout, CashoutStatus.INITIATED)
    session.commit()
    logger.info("Cashout claimed for initiation", cashout_id=cashout_id, actor_id=actor_id, gateway=breaker_key)

    result = None
    failure: Optional[str] = None
    attempts = max_attempts()
    for attempt in range(1, attempts + 1):
        allowed, reason = GATEWAY_CIRCUIT_BREAKER.allow_call(breaker_key)
        if not allowed:
            failure = f"Gateway {breaker_key} unavailable ({reason})"
            break
        try:
            result = await gateway.initiate_payout(
                cashout.cash_amount, cashout.method.value, cashout.destination_ref, cashout.reference
            )
            GATEWAY_CIRCUIT_BREAKER.record_success(breaker_key)
            break
        except GatewayRejected as e:
            # The provider answered; rejection says nothing about its health
            GATEWAY_CIRCUIT_BREAKER.record_success(breaker_key)
            failure = f"Rejected by {breaker_key}: {e.message}"
            break
        except GatewayUnavailable as e:
            GATEWAY_CIRCUIT_BREAKER.record_failure(breaker_key)
            failure = f"Gateway {breaker_key} unavailable after {attempt} attempt(s): {e.message}"
            if attempt < attempts:
                delay = compute_backoff_seconds(attempt)
                logger.warning(
                    "Payout gateway unavailable; retrying",
                    cashout_id=cashout_id,
                    gateway=breaker_key,
                    attempt=attempt,
                    delay_seconds=round(delay, 2),
                )
                await sleep(delay)
        except Exception as e:
            # Unexpected gateway failure; the claim is committed, so resolve it here
            GATEWAY_CIRCUIT_BREAKER.record_failure(breaker_key)
            logger.error(
                "Payout gateway raised unexpectedly",
                cashout_id=cashout_id,
                gateway=breaker_key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            failure = f"Gateway {breaker_key} error: {type(e).__name__}"
            break

    if result is None:
        return _fail_initiated(session, cashout, failure or "Payout could not be initiated")

    outcome = normalize_gateway_status(result.status)
    if outcome in (TransactionStatus.FAILED, TransactionStatus.CANCELLED):
        raw = result.raw_response or {}
        detail = raw.get("failure_reason") or raw.get("error") or result.status
        return _fail_initiated(
            session, cashout, f"Rejected by {breaker_key}: {detail}", gateway_txn_id=result.gateway_txn_id
        )
    if outcome is None:
        logger.warning(
            "Unrecognised payout status; treating as processing",
            cashout_id=cashout_id,
            gateway=breaker_key,
            gateway_status=result.status,
        )

    _update_transaction(
        session,
        cashout.id,
        status=TransactionStatus.PROCESSING,
        gateway_txn_id=result.gateway_txn_id,
    )
    session.commit()
    log_business_event(
        "cashout_initiated",
        {
            "cashout_id": cashout.id,
            "user_id": cashout.user_id,
            "gateway": breaker_key,
            "gateway_txn_id": result.gateway_txn_id,
            "actor_id": actor_id,
        },
    )
    return _refresh_all(session, cashout)


# --------------------------------- Webhook -------------------------------- #
def _same_outcome(request_status: CashoutStatus, outcome: TransactionStatus) -> bool:
    return _REQUEST_STATUS_FOR.get(outcome) == request_status


def handle_webhook(
    session: Session,
    reference: str,
    gateway_status: str,
    gateway_txn_id: Optional[str],
    raw_payload: Optional[Dict[str, Any]],
    failure_reason: Optional[str] = None,
    *,
    gateway: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a gateway notification; safe to call any number of times.

    When ``gateway`` is given, references belonging to another gateway are
    treated as unknown.
    """
    outcome = normalize_gateway_status(gateway_status)
    if outcome is None:
        logger.warning("Ignoring webhook with unknown status", reference=reference, gateway_status=gateway_status)
        return {"reference": reference, "applied": False, "reason": "unknown_status"}

    cashout = _load_by_reference(session, reference)
    if gateway is not None and cashout.transaction is not None and cashout.transaction.gateway.value != gateway:
        raise NotFound(f"No cashout request with reference '{reference}'", reference=reference, gateway=gateway)
    summary: Dict[str, Any] = {"reference": reference, "cashout_id": cashout.id, "outcome": outcome.value}

    if outcome == TransactionStatus.PROCESSING:
        if cashout.status != CashoutStatus.INITIATED:
            return {**summary, "applied": False, "status": cashout.status.value}
        values: Dict[str, Any] = {"status": TransactionStatus.PROCESSING, "raw_webhook": raw_payload}
        if gateway_txn_id:
            values["gateway_txn_id"] = gateway_txn_id
        applied = _update_transaction(session, cashout.id, **values)
        session.commit()
        return {**summary, "applied": bool(applied), "status": cashout.status.value}

    if cashout.status == CashoutStatus.PENDING:
        raise InvalidStateTransition("CashoutRequest", cashout.id, cashout.status.value, _REQUEST_STATUS_FOR[outcome].value)

    if cashout.status in TERMINAL_STATUSES:
        if _same_outcome(cashout.status, outcome):
            logger.debug("Duplicate webhook ignored", reference=reference, status=cashout.status.value)
        else:
            logger.warning(
                "Conflicting webhook for settled cashout ignored",
                reference=reference,
                request_status=cashout.status.value,
                webhook_status=outcome.value,
            )
        return {**summary, "applied": False, "status": cashout.status.value}

    txn_values: Dict[str, Any] = {"status": outcome, "raw_webhook": raw_payload, "processed_at": utc_now()}
    if gateway_txn_id:
        txn_values["gateway_txn_id"] = gateway_txn_id

    try:
        if outcome == TransactionStatus.SUCCEEDED:
            _transition(session, cashout, CashoutStatus.SUCCEEDED)
            wallet_ledger.deduct_points(session, cashout.user_id, cashout.points_used)
            wallet_ledger.settle_locked_cash(session, cashout.user_id, cashout.cash_amount)
        else:
            reason = failure_reason or f"Payout {outcome.value} by gateway"
            _transition(session, cashout, CashoutStatus.FAILED, values={"failure_reason": reason})
            wallet_ledger.unlock_cash(session, cashout.user_id, cashout.cash_amount)
            txn_values["failure_reason"] = reason
        _update_transaction(session, cashout.id, **txn_values)
        session.commit()
    except InvalidStateTransition:
        # A concurrent delivery of the same notification won
        cashout = _load(session, cashout.id)
        logger.info("Webhook lost race to a concurrent delivery", reference=reference, status=cashout.status.value)
        return {**summary, "applied": False, "status": cashout.status.value}
    except EcoPointsError:
        session.rollback()
        raise

    _refresh_all(session, cashout)
    log_business_event(
        "cashout_settled",
        {
            "cashout_id": cashout.id,
            "user_id": cashout.user_id,
            "status": cashout.status.value,
            "gateway_txn_id": gateway_txn_id,
        },
    )
    return {**summary, "applied": True, "status": cashout.status.value}


# --------------------------------- Cancel --------------------------------- #
def cancel_cashout(session: Session, cashout_id: int, user_id: int) -> CashoutRequest:
    cashout = _load(session, cashout_id)
    if cashout.user_id != user_id:
        raise PermissionDenied("Only the owner can cancel a cashout request", cashout_id=cashout_id)
    try:
        _transition(session, cashout, CashoutStatus.CANCELED)
        wallet_ledger.unlock_cash(session, cashout.user_id, cashout.cash_amount)
        _update_transaction(session, cashout.id, status=TransactionStatus.CANCELLED, processed_at=utc_now())
        session.commit()
    except EcoPointsError:
        session.rollback()
        raise
    log_business_event("cashout_canceled", {"cashout_id": cashout_id, "user_id": user_id})
    return _refresh_all(session, cashout)


# --------------------------------- Queries -------------------------------- #
def get_cashout(session: Session, cashout_id: int, user_id: Optional[int] = None, *, elevated: bool = False) -> CashoutRequest:
    cashout = _load(session, cashout_id)
    if not elevated and cashout.user_id != user_id:
        # Other users' requests are indistinguishable from missing ones
        raise NotFound(f"Cashout request {cashout_id} not found", cashout_id=cashout_id)
    return cashout


def list_cashouts(
    session: Session,
    user_id: Optional[int] = None,
    *,
    status: Optional[CashoutStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[CashoutRequest]:
    query = session.query(CashoutRequest)
    if user_id is not None:
        query = query.filter(CashoutRequest.user_id == user_id)
    if status is not None:
        query = query.filter(CashoutRequest.status == status)
    return query.order_by(CashoutRequest.created_at.desc(), CashoutRequest.id.desc()).offset(offset).limit(limit).all()


__all__ = [
    "ALLOWED_TRANSITIONS",
    "WEBHOOK_STATUS_MAP",
    "normalize_gateway_status",
    "create_cashout",
    "initiate_cashout",
    "handle_webhook",
    "cancel_cashout",
    "get_cashout",
    "list_cashouts",
]
