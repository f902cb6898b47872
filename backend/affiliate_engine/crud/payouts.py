from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from affiliate_engine.core.time import utcnow
from affiliate_engine.core.utils.money import to_money
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.enums import PayoutMethodEnum, PayoutStatusEnum
from affiliate_engine.models.payouts import Payout


def get_payout(db: Session, *, payout_id: int) -> Payout | None:
    return db.query(Payout).filter(Payout.id == payout_id).first()


def get_payout_version(db: Session, *, affiliate_id: int) -> int | None:
    return db.query(Affiliate.payout_version).filter(Affiliate.id == affiliate_id).scalar()


def sum_payouts(
    db: Session,
    *,
    statuses: Iterable[PayoutStatusEnum],
    affiliate_id: int | None = None,
) -> Decimal:
    query = db.query(func.coalesce(func.sum(Payout.amount), 0)).filter(Payout.status.in_(list(statuses)))
    if affiliate_id is not None:
        query = query.filter(Payout.affiliate_id == affiliate_id)
    return to_money(query.scalar())


def create_payout_if_unchanged(
    db: Session,
    *,
    affiliate_id: int,
    expected_version: int,
    amount: Decimal,
    method: PayoutMethodEnum,
    requested_at: datetime | None = None,
) -> Payout | None:
    """Insert a pending payout only if no other payout was accepted since
    ``expected_version`` was read.

    The version bump and the insert commit together; a stale version
    matches zero rows and nothing is written.
    """
    claimed = (
        db.query(Affiliate)
        .filter(Affiliate.id == affiliate_id, Affiliate.payout_version == expected_version)
        .update(
            {
                Affiliate.payout_version: Affiliate.payout_version + 1,
                Affiliate.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    if not claimed:
        db.rollback()
        return None
    payout = Payout(
        affiliate_id=affiliate_id,
        amount=amount,
        method=method,
        status=PayoutStatusEnum.PENDING,
        request_date=requested_at or utcnow(),
    )
    db.add(payout)
    db.commit()
    db.refresh(payout)
    return payout


def settle_payout(
    db: Session,
    *,
    payout_id: int,
    to_status: PayoutStatusEnum,
    processed_at: datetime,
    failure_reason: str | None = None,
) -> bool:
    updated = (
        db.query(Payout)
        .filter(Payout.id == payout_id, Payout.status == PayoutStatusEnum.PENDING)
        .update(
            {
                Payout.status: to_status,
                Payout.processed_at: processed_at,
                Payout.failure_reason: failure_reason,
                Payout.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return bool(updated)


def payouts_query(
    db: Session,
    *,
    affiliate_id: int,
    status: PayoutStatusEnum | None = None,
) -> Query:
    query = db.query(Payout).filter(Payout.affiliate_id == affiliate_id)
    if status is not None:
        query = query.filter(Payout.status == status)
    return query.order_by(Payout.request_date.desc(), Payout.id.desc())
