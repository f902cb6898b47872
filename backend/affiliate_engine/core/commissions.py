from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.db import store_guard
from affiliate_engine.core.errors import ConflictError, InvalidState, NotFound, ValidationError
from affiliate_engine.core.logging import get_structured_logger
from affiliate_engine.core.metrics import record_commission_created, record_commissions_earned
from affiliate_engine.core.tiers import rate_for
from affiliate_engine.core.time import utcnow
from affiliate_engine.core.utils.money import ZERO, percent_of, to_money
from affiliate_engine.core.utils.pagination import Page, normalize_page, paginate
from affiliate_engine.crud.affiliates import get_affiliate as crud_get_affiliate
from affiliate_engine.crud.commissions import (
    COMMISSION_SORT_FIELDS,
    commissions_query,
    create_commission,
    get_commission,
    get_commission_by_order,
    get_commissions_by_ids,
    mark_commission_paid as crud_mark_commission_paid,
    mark_order_commissions_earned,
    sum_commissions_by_status,
)
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, ReferralTypeEnum
from affiliate_engine.schemas.commissions import CommissionTotals


logger = get_structured_logger(__name__)


def _require_order_id(order_id: str | None) -> str:
    order_id = (str(order_id) if order_id is not None else "").strip()
    if not order_id:
        raise ValidationError("order_id is required")
    return order_id


def _require_affiliate(db: Session, affiliate_id: int) -> None:
    with store_guard(db, "commissions.get_affiliate"):
        affiliate = crud_get_affiliate(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise NotFound(f"Affiliate {affiliate_id} not found")


def create_pending(
    db: Session,
    affiliate_id: int,
    order_id: str,
    order_total,
    referral_type: ReferralTypeEnum = ReferralTypeEnum.CODE,
    referral_code: str | None = None,
    referred_user_id: str | None = None,
    *,
    config: Settings | None = None,
) -> Commission:
    """Record the commission an order will earn once paid.

    Idempotent per order: a second call returns the first record untouched.
    Rate and amount are frozen here and never recomputed.
    """
    config = config or get_settings()
    order_id = _require_order_id(order_id)
    try:
        order_total = to_money(order_total)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if order_total < ZERO:
        raise ValidationError("order_total must not be negative")

    with store_guard(db, "commissions.lookup_order"):
        existing = get_commission_by_order(db, order_id=order_id)
    if existing:
        logger.info(
            "commission.duplicate",
            extra={"order_id": order_id, "affiliate_id": existing.affiliate_id},
        )
        return existing

    _require_affiliate(db, affiliate_id)
    rate = rate_for(db, affiliate_id, config=config)
    amount = percent_of(order_total, rate)
    try:
        with store_guard(db, "commissions.create_pending"):
            commission = create_commission(
                db,
                affiliate_id=affiliate_id,
                order_id=order_id,
                order_total=order_total,
                rate=rate,
                amount=amount,
                referral_type=ReferralTypeEnum(referral_type),
                referral_code=referral_code,
                referred_user_id=referred_user_id,
            )
    except ConflictError:
        # A concurrent request for the same order won the insert.
        with store_guard(db, "commissions.lookup_order"):
            existing = get_commission_by_order(db, order_id=order_id)
        if existing is None:
            raise
        logger.info(
            "commission.duplicate",
            extra={"order_id": order_id, "affiliate_id": existing.affiliate_id},
        )
        return existing

    record_commission_created(commission.referral_type)
    logger.info(
        "commission.created",
        extra={
            "affiliate_id": affiliate_id,
            "order_id": order_id,
            "rate": rate,
            "amount": amount,
        },
    )
    return commission


def confirm_earned(db: Session, order_id: str, transaction_id: str) -> list[Commission]:
    """Move the order's pending commissions to earned.

    Returns only the commissions this call transitioned; a repeated
    confirmation returns an empty list.
    """
    order_id = _require_order_id(order_id)
    transaction_id = (str(transaction_id) if transaction_id is not None else "").strip()
    if not transaction_id:
        raise ValidationError("transaction_id is required")

    with store_guard(db, "commissions.confirm_earned"):
        ids = mark_order_commissions_earned(
            db,
            order_id=order_id,
            transaction_id=transaction_id,
            earned_at=utcnow(),
        )
        commissions = get_commissions_by_ids(db, commission_ids=ids)
    record_commissions_earned(len(commissions))
    if commissions:
        logger.info(
            "commission.earned",
            extra={
                "order_id": order_id,
                "affiliate_id": commissions[0].affiliate_id,
                "transaction_id": transaction_id,
                "count": len(commissions),
            },
        )
    else:
        logger.info("commission.earn_noop", extra={"order_id": order_id})
    return commissions


def mark_commission_paid(db: Session, commission_id: int, paid_at: datetime | None = None) -> Commission:
    with store_guard(db, "commissions.get"):
        commission = get_commission(db, commission_id=commission_id)
    if not commission:
        raise NotFound(f"Commission {commission_id} not found")
    if commission.status != CommissionStatusEnum.EARNED:
        raise InvalidState(
            f"Commission {commission_id} is {commission.status.value}, only earned commissions can be paid"
        )
    with store_guard(db, "commissions.mark_paid"):
        moved = crud_mark_commission_paid(db, commission_id=commission_id, paid_at=paid_at or utcnow())
    if not moved:
        raise InvalidState(f"Commission {commission_id} is no longer earned")
    db.refresh(commission)
    logger.info(
        "commission.paid",
        extra={"affiliate_id": commission.affiliate_id, "order_id": commission.order_id},
    )
    return commission


def dashboard_totals(db: Session, affiliate_id: int) -> CommissionTotals:
    with store_guard(db, "commissions.totals"):
        sums = sum_commissions_by_status(db, affiliate_id=affiliate_id)
    earned = sums[CommissionStatusEnum.EARNED]
    paid = sums[CommissionStatusEnum.PAID]
    return CommissionTotals(
        total_earned=to_money(earned + paid),
        total_pending=sums[CommissionStatusEnum.PENDING],
        total_paid=paid,
        total_earned_unpaid=earned,
    )


def commission_history(
    db: Session,
    affiliate_id: int,
    page: int | None = 1,
    limit: int | None = None,
    status: CommissionStatusEnum | str | None = None,
    sort_by: str = "earned_at",
    *,
    config: Settings | None = None,
) -> Page:
    config = config or get_settings()
    if sort_by not in COMMISSION_SORT_FIELDS:
        raise ValidationError(f"Cannot sort commissions by {sort_by}")
    if status is not None:
        try:
            status = CommissionStatusEnum(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown commission status {status}") from exc
    page, limit = normalize_page(
        page,
        limit,
        default_limit=config.HISTORY_DEFAULT_LIMIT,
        max_limit=config.HISTORY_MAX_LIMIT,
    )
    with store_guard(db, "commissions.history"):
        query = commissions_query(db, affiliate_id=affiliate_id, status=status, sort_by=sort_by)
        return paginate(query, page=page, limit=limit)

