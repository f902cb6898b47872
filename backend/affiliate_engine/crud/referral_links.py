from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.core.errors import ConflictError
from affiliate_engine.models.enums import ReferralTypeEnum
from affiliate_engine.models.referrals import ReferralLink


def normalize_code(code: str | None) -> str | None:
    if not code:
        return None
    return code.strip().upper() or None


def get_referral_by_code(
    db: Session,
    *,
    code: str,
    now: datetime | None = None,
) -> ReferralLink | None:
    """Code link for ``code``; when ``now`` is given, expired links are excluded."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    query = db.query(ReferralLink).filter(
        ReferralLink.referral_code == normalized,
        ReferralLink.referral_type == ReferralTypeEnum.CODE,
    )
    if now is not None:
        query = query.filter(or_(ReferralLink.expires_at.is_(None), ReferralLink.expires_at > now))
    return query.first()


def get_customer_referral(db: Session, *, referred_user_id: str) -> ReferralLink | None:
    return (
        db.query(ReferralLink)
        .filter(
            ReferralLink.referred_user_id == referred_user_id,
            ReferralLink.referral_type == ReferralTypeEnum.CUSTOMER_REFERRAL,
        )
        .first()
    )


def create_referral_link(
    db: Session,
    *,
    affiliate_id: int,
    referral_type: ReferralTypeEnum,
    referral_code: str | None = None,
    referred_user_id: str | None = None,
    expires_at: datetime | None = None,
) -> ReferralLink:
    link = ReferralLink(
        affiliate_id=affiliate_id,
        referral_type=referral_type,
        referral_code=normalize_code(referral_code),
        referred_user_id=referred_user_id,
        expires_at=expires_at,
    )
    db.add(link)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        target = referral_code or referred_user_id
        raise ConflictError(f"Referral link for {target} already exists") from exc
    db.refresh(link)
    return link


def list_referral_codes(
    db: Session,
    *,
    affiliate_id: int,
    without_expiry_only: bool = False,
) -> list[ReferralLink]:
    query = db.query(ReferralLink).filter(
        ReferralLink.affiliate_id == affiliate_id,
        ReferralLink.referral_type == ReferralTypeEnum.CODE,
    )
    if without_expiry_only:
        query = query.filter(ReferralLink.expires_at.is_(None))
    return query.order_by(ReferralLink.created_at.asc(), ReferralLink.id.asc()).all()
