from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.db import store_guard
from affiliate_engine.core.errors import (
    ConflictError,
    InsufficientBalance,
    InvalidState,
    NotFound,
    ValidationError,
)
from affiliate_engine.core.logging import get_structured_logger
from affiliate_engine.core.metrics import record_payout_request
from affiliate_engine.core.time import utcnow
from affiliate_engine.core.utils.money import CENT, ZERO, to_money
from affiliate_engine.core.utils.pagination import Page, normalize_page, paginate
from affiliate_engine.crud.affiliates import get_affiliate as crud_get_affiliate
from affiliate_engine.crud.commissions import sum_commissions
from affiliate_engine.crud.payouts import (
    create_payout_if_unchanged,
    get_payout,
    get_payout_version,
    payouts_query,
    settle_payout,
    sum_payouts,
)
from affiliate_engine.models.enums import (
    AffiliateStatusEnum,
    CommissionStatusEnum,
    PayoutMethodEnum,
    PayoutStatusEnum,
)
from affiliate_engine.models.payouts import Payout


logger = get_structured_logger(__name__)

CREDIT_STATUSES = (CommissionStatusEnum.EARNED, CommissionStatusEnum.PAID)
DEBIT_STATUSES = (PayoutStatusEnum.PENDING, PayoutStatusEnum.PAID)


def _parse_amount(amount) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid payout amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid payout amount: {amount!r}")
    if value != value.quantize(CENT):
        raise ValidationError("Payout amount must have at most two decimal places")
    if value <= ZERO:
        raise ValidationError("Payout amount must be greater than zero")
    return to_money(value)


def _parse_method(method) -> PayoutMethodEnum:
    try:
        return PayoutMethodEnum(method)
    except ValueError as exc:
        raise ValidationError(f"Unknown payout method {method}") from exc


def available_balance(db: Session, affiliate_id: int) -> Decimal:
    """Earned (or already settled) commissions minus payouts not failed."""
    with store_guard(db, "payouts.available_balance"):
        credit = sum_commissions(db, statuses=CREDIT_STATUSES, affiliate_id=affiliate_id)
        debit = sum_payouts(db, statuses=DEBIT_STATUSES, affiliate_id=affiliate_id)
    return to_money(credit - debit)


def request_payout(
    db: Session,
    affiliate_id: int,
    amount,
    method,
    *,
    config: Settings | None = None,
) -> Payout:
    """Record a pending payout if the live balance covers it.

    Each accepted request bumps the affiliate's payout version in the same
    transaction as the insert. A request whose balance read was overtaken
    by another accepted payout re-reads the balance and tries again.
    """
    config = config or get_settings()
    with store_guard(db, "payouts.get_affiliate"):
        affiliate = crud_get_affiliate(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise NotFound(f"Affiliate {affiliate_id} not found")
    if affiliate.status != AffiliateStatusEnum.ACTIVE:
        record_payout_request("rejected")
        raise InvalidState(
            f"Affiliate {affiliate_id} is {affiliate.status.value}; only active affiliates can request payouts"
        )
    if not affiliate.payout_details:
        record_payout_request("rejected")
        raise ValidationError("Payout details must be set before requesting a payout")
    amount = _parse_amount(amount)
    method = _parse_method(method)

    for attempt in range(1, config.PAYOUT_MAX_ATTEMPTS + 1):
        # Version first: anything accepted after this read makes the insert fail.
        with store_guard(db, "payouts.read_version"):
            version = get_payout_version(db, affiliate_id=affiliate_id)
        balance = available_balance(db, affiliate_id)
        if amount > balance:
            record_payout_request("insufficient_balance")
            logger.info(
                "payout.rejected",
                extra={
                    "affiliate_id": affiliate_id,
                    "requested": amount,
                    "available_balance": balance,
                },
            )
            raise InsufficientBalance(
                f"Requested {amount} exceeds available balance {balance}",
                available_balance=balance,
            )
        with store_guard(db, "payouts.create"):
            payout = create_payout_if_unchanged(
                db,
                affiliate_id=affiliate_id,
                expected_version=version,
                amount=amount,
                method=method,
            )
        if payout is not None:
            record_payout_request("accepted")
            logger.info(
                "payout.requested",
                extra={
                    "affiliate_id": affiliate_id,
                    "payout_id": payout.id,
                    "amount": amount,
                    "method": method.value,
                },
            )
            return payout
        logger.info(
            "payout.version_conflict",
            extra={"affiliate_id": affiliate_id, "attempt": attempt},
        )

    record_payout_request("rejected")
    raise ConflictError(
        f"Payout request for affiliate {affiliate_id} kept racing other payouts; try again"
    )


def _settle(
    db: Session,
    payout_id: int,
    *,
    to_status: PayoutStatusEnum,
    processed_at: datetime | None,
    failure_reason: str | None = None,
) -> Payout:
    with store_guard(db, "payouts.get"):
        payout = get_payout(db, payout_id=payout_id)
    if not payout:
        raise NotFound(f"Payout {payout_id} not found")
    if payout.status != PayoutStatusEnum.PENDING:
        raise InvalidState(f"Payout {payout_id} is already {payout.status.value}")
    with store_guard(db, "payouts.settle"):
        moved = settle_payout(
            db,
            payout_id=payout_id,
            to_status=to_status,
            processed_at=processed_at or utcnow(),
            failure_reason=failure_reason,
        )
    if not moved:
        raise InvalidState(f"Payout {payout_id} is no longer pending")
    db.refresh(payout)
    logger.info(
        f"payout.{to_status.value}",
        extra={"affiliate_id": payout.affiliate_id, "payout_id": payout_id},
    )
    return payout


def mark_payout_paid(db: Session, payout_id: int, processed_at: datetime | None = None) -> Payout:
    return _settle(db, payout_id, to_status=PayoutStatusEnum.PAID, processed_at=processed_at)


def mark_payout_failed(
    db: Session,
    payout_id: int,
    reason: str,
    processed_at: datetime | None = None,
) -> Payout:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A failure reason is required")
    return _settle(
        db,
        payout_id,
        to_status=PayoutStatusEnum.FAILED,
        processed_at=processed_at,
        failure_reason=reason,
    )


def list_payout_history(
    db: Session,
    affiliate_id: int,
    page: int | None = 1,
    limit: int | None = None,
    status: PayoutStatusEnum | str | None = None,
    *,
    config: Settings | None = None,
) -> Page:
    config = config or get_settings()
    if status is not None:
        try:
            status = PayoutStatusEnum(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown payout status {status}") from exc
    page, limit = normalize_page(
        page,
        limit,
        default_limit=config.HISTORY_DEFAULT_LIMIT,
        max_limit=config.HISTORY_MAX_LIMIT,
    )
    with store_guard(db, "payouts.history"):
        return paginate(payouts_query(db, affiliate_id=affiliate_id, status=status), page=page, limit=limit)
