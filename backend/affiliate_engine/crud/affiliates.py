from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from affiliate_engine.core.errors import ConflictError
from affiliate_engine.core.time import utcnow
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.enums import AffiliateStatusEnum, ReferralTypeEnum
from affiliate_engine.models.referrals import ReferralLink


AFFILIATE_SORT_FIELDS = {"created_at", "updated_at", "approved_at", "full_name", "status"}


def create_affiliate(
    db: Session,
    *,
    full_name: str,
    email: str,
    phone: str,
    country: str,
    promotion_channel: str,
    platform_link: str,
    affiliate_type: str,
    commission_tier: Decimal,
    company_name: str | None = None,
    terms_accepted: bool = True,
) -> Affiliate:
    affiliate = Affiliate(
        full_name=full_name,
        email=email,
        phone=phone,
        company_name=company_name,
        type=affiliate_type,
        promotion_channel=promotion_channel,
        platform_link=platform_link,
        country=country,
        terms_accepted=terms_accepted,
        status=AffiliateStatusEnum.PENDING,
        commission_tier=commission_tier,
        payout_version=0,
    )
    db.add(affiliate)
    db.commit()
    db.refresh(affiliate)
    return affiliate


def get_affiliate(db: Session, *, affiliate_id: int) -> Affiliate | None:
    return db.query(Affiliate).filter(Affiliate.id == affiliate_id).first()


def update_affiliate(db: Session, *, affiliate: Affiliate, updates: dict) -> Affiliate:
    for key, value in updates.items():
        setattr(affiliate, key, value)
    db.commit()
    db.refresh(affiliate)
    return affiliate


def _status_update(
    db: Session,
    *,
    affiliate_id: int,
    from_status: AffiliateStatusEnum,
    values: dict,
) -> int:
    values = dict(values)
    values[Affiliate.updated_at] = utcnow()
    return (
        db.query(Affiliate)
        .filter(Affiliate.id == affiliate_id, Affiliate.status == from_status)
        .update(values, synchronize_session=False)
    )


def transition_affiliate_status(
    db: Session,
    *,
    affiliate_id: int,
    from_status: AffiliateStatusEnum,
    to_status: AffiliateStatusEnum,
    status_reason: str | None = None,
) -> bool:
    updated = _status_update(
        db,
        affiliate_id=affiliate_id,
        from_status=from_status,
        values={Affiliate.status: to_status, Affiliate.status_reason: status_reason},
    )
    if not updated:
        db.rollback()
        return False
    db.commit()
    return True


def activate_with_referral_code(
    db: Session,
    *,
    affiliate_id: int,
    approved_by: str,
    referral_code: str,
    approved_at: datetime | None = None,
) -> ReferralLink | None:
    """Move pending -> active and issue the initial code in one transaction.

    Returns None when the affiliate was no longer pending. Raises
    ConflictError when the code collided with one issued concurrently.
    """
    updated = _status_update(
        db,
        affiliate_id=affiliate_id,
        from_status=AffiliateStatusEnum.PENDING,
        values={
            Affiliate.status: AffiliateStatusEnum.ACTIVE,
            Affiliate.approved_at: approved_at or utcnow(),
            Affiliate.approved_by: approved_by,
            Affiliate.status_reason: None,
        },
    )
    if not updated:
        db.rollback()
        return None
    link = ReferralLink(
        affiliate_id=affiliate_id,
        referral_type=ReferralTypeEnum.CODE,
        referral_code=referral_code,
    )
    db.add(link)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Referral code {referral_code} already issued") from exc
    db.refresh(link)
    return link


def affiliates_query(
    db: Session,
    *,
    status: AffiliateStatusEnum | None = None,
    sort_by: str = "created_at",
) -> Query:
    query = db.query(Affiliate)
    if status is not None:
        query = query.filter(Affiliate.status == status)
    column = getattr(Affiliate, sort_by)
    return query.order_by(column.desc().nulls_last(), Affiliate.id.desc())


def count_affiliates_by_status(db: Session) -> dict[AffiliateStatusEnum, int]:
    rows = db.query(Affiliate.status, func.count(Affiliate.id)).group_by(Affiliate.status).all()
    return {AffiliateStatusEnum(status): int(count) for status, count in rows}
