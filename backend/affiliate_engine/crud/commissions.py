from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from affiliate_engine.core.errors import ConflictError
from affiliate_engine.core.time import utcnow
from affiliate_engine.core.utils.money import to_money
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, ReferralTypeEnum


COMMISSION_SORT_FIELDS = {"earned_at", "created_at", "amount", "order_total", "rate"}


def get_commission(db: Session, *, commission_id: int) -> Commission | None:
    return db.query(Commission).filter(Commission.id == commission_id).first()


def get_commission_by_order(db: Session, *, order_id: str) -> Commission | None:
    return db.query(Commission).filter(Commission.order_id == order_id).first()


def create_commission(
    db: Session,
    *,
    affiliate_id: int,
    order_id: str,
    order_total: Decimal,
    rate: Decimal,
    amount: Decimal,
    referral_type: ReferralTypeEnum,
    referral_code: str | None = None,
    referred_user_id: str | None = None,
) -> Commission:
    """Insert a pending commission; ConflictError when the order already has one."""
    commission = Commission(
        affiliate_id=affiliate_id,
        order_id=order_id,
        order_total=order_total,
        rate=rate,
        amount=amount,
        referral_type=referral_type,
        referral_code=referral_code,
        referred_user_id=referred_user_id,
        status=CommissionStatusEnum.PENDING,
    )
    db.add(commission)
    # Informational cache of the last applied rate, same transaction.
    db.query(Affiliate).filter(Affiliate.id == affiliate_id).update(
        {Affiliate.commission_tier: rate, Affiliate.updated_at: utcnow()},
        synchronize_session=False,
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Commission for order {order_id} already exists") from exc
    db.refresh(commission)
    return commission


def mark_order_commissions_earned(
    db: Session,
    *,
    order_id: str,
    transaction_id: str,
    earned_at: datetime,
) -> list[int]:
    """Atomically move pending commissions for an order to earned.

    The status predicate is part of the UPDATE, so a concurrent or retried
    confirmation matches zero rows. Returns the ids that were transitioned.
    """
    candidate_ids = [
        row.id
        for row in db.query(Commission.id)
        .filter(Commission.order_id == order_id, Commission.status == CommissionStatusEnum.PENDING)
        .all()
    ]
    transitioned: list[int] = []
    for commission_id in candidate_ids:
        updated = (
            db.query(Commission)
            .filter(Commission.id == commission_id, Commission.status == CommissionStatusEnum.PENDING)
            .update(
                {
                    Commission.status: CommissionStatusEnum.EARNED,
                    Commission.earned_at: earned_at,
                    Commission.transaction_id: transaction_id,
                    Commission.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if updated:
            transitioned.append(commission_id)
    db.commit()
    return transitioned


def mark_commission_paid(db: Session, *, commission_id: int, paid_at: datetime) -> bool:
    updated = (
        db.query(Commission)
        .filter(Commission.id == commission_id, Commission.status == CommissionStatusEnum.EARNED)
        .update(
            {
                Commission.status: CommissionStatusEnum.PAID,
                Commission.paid_at: paid_at,
                Commission.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return bool(updated)


def get_commissions_by_ids(db: Session, *, commission_ids: Iterable[int]) -> list[Commission]:
    ids = list(commission_ids)
    if not ids:
        return []
    return db.query(Commission).filter(Commission.id.in_(ids)).order_by(Commission.id.asc()).all()


def count_earned_between(
    db: Session,
    *,
    affiliate_id: int,
    since: datetime,
    until: datetime,
) -> int:
    return (
        db.query(func.count(Commission.id))
        .filter(
            Commission.affiliate_id == affiliate_id,
            Commission.status == CommissionStatusEnum.EARNED,
            Commission.earned_at > since,
            Commission.earned_at <= until,
        )
        .scalar()
        or 0
    )


def sum_commissions(
    db: Session,
    *,
    statuses: Iterable[CommissionStatusEnum],
    affiliate_id: int | None = None,
) -> Decimal:
    query = db.query(func.coalesce(func.sum(Commission.amount), 0)).filter(
        Commission.status.in_(list(statuses))
    )
    if affiliate_id is not None:
        query = query.filter(Commission.affiliate_id == affiliate_id)
    return to_money(query.scalar())


def sum_commissions_by_status(db: Session, *, affiliate_id: int) -> dict[CommissionStatusEnum, Decimal]:
    rows = (
        db.query(Commission.status, func.coalesce(func.sum(Commission.amount), 0))
        .filter(Commission.affiliate_id == affiliate_id)
        .group_by(Commission.status)
        .all()
    )
    totals = {status: to_money(0) for status in CommissionStatusEnum}
    for status, total in rows:
        totals[CommissionStatusEnum(status)] = to_money(total)
    return totals


def commissions_query(
    db: Session,
    *,
    affiliate_id: int,
    status: CommissionStatusEnum | None = None,
    sort_by: str = "earned_at",
) -> Query:
    query = db.query(Commission).filter(Commission.affiliate_id == affiliate_id)
    if status is not None:
        query = query.filter(Commission.status == status)
    column = getattr(Commission, sort_by)
    return query.order_by(column.desc().nulls_last(), Commission.id.desc())
