from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.db import store_guard
from affiliate_engine.core.errors import ConflictError, InvalidState, NotFound, ValidationError
from affiliate_engine.core.logging import get_structured_logger
from affiliate_engine.core.time import as_utc, utcnow
from affiliate_engine.crud.affiliates import get_affiliate as crud_get_affiliate
from affiliate_engine.crud.referral_links import (
    create_referral_link,
    get_customer_referral,
    get_referral_by_code,
    normalize_code,
)
from affiliate_engine.models.enums import AffiliateStatusEnum, ReferralTypeEnum
from affiliate_engine.models.referrals import ReferralLink


logger = get_structured_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_SUFFIX_LENGTH = 6


@dataclass(frozen=True)
class Attribution:
    affiliate_id: int
    referral_type: ReferralTypeEnum
    referral_code: str | None = None
    referred_user_id: str | None = None


def generate_referral_code(affiliate_id: int, *, config: Settings | None = None) -> str:
    config = config or get_settings()
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_SUFFIX_LENGTH))
    return f"{config.REFERRAL_CODE_PREFIX}-{affiliate_id:08X}-{suffix}"


def _require_active_affiliate(db: Session, affiliate_id: int):
    with store_guard(db, "referrals.get_affiliate"):
        affiliate = crud_get_affiliate(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise NotFound(f"Affiliate {affiliate_id} not found")
    if affiliate.status != AffiliateStatusEnum.ACTIVE:
        raise InvalidState(f"Affiliate {affiliate_id} is {affiliate.status.value}, not active")
    return affiliate


def resolve_attribution(
    db: Session,
    order_id: str,
    referral_code: str | None = None,
    referred_user_id: str | None = None,
) -> Attribution | None:
    """Find the affiliate an order belongs to.

    An unexpired referral code takes precedence over a customer referral.
    Only one link is ever consulted for the result, and an affiliate that
    is not active earns nothing. Nothing is written.
    """
    now = utcnow()
    link: ReferralLink | None = None
    code = normalize_code(referral_code)
    with store_guard(db, "referrals.resolve"):
        if code:
            link = get_referral_by_code(db, code=code, now=now)
        if link is None and referred_user_id:
            link = get_customer_referral(db, referred_user_id=referred_user_id)
        if link is None:
            return None
        affiliate = crud_get_affiliate(db, affiliate_id=link.affiliate_id)

    if not affiliate or affiliate.status != AffiliateStatusEnum.ACTIVE:
        logger.info(
            "attribution.inactive_affiliate",
            extra={"order_id": order_id, "affiliate_id": link.affiliate_id},
        )
        return None
    return Attribution(
        affiliate_id=link.affiliate_id,
        referral_type=ReferralTypeEnum(link.referral_type),
        referral_code=link.referral_code,
        referred_user_id=link.referred_user_id,
    )


def resolve_affiliate(
    db: Session,
    order_id: str,
    referral_code: str | None = None,
    referred_user_id: str | None = None,
) -> int | None:
    attribution = resolve_attribution(
        db,
        order_id,
        referral_code=referral_code,
        referred_user_id=referred_user_id,
    )
    return attribution.affiliate_id if attribution else None


def issue_referral_code(
    db: Session,
    affiliate_id: int,
    expires_at: datetime | None = None,
    *,
    config: Settings | None = None,
) -> ReferralLink:
    """Issue an additional code for an active affiliate, retrying on collision."""
    config = config or get_settings()
    _require_active_affiliate(db, affiliate_id)
    if expires_at is not None and as_utc(expires_at) <= utcnow():
        raise ValidationError("expires_at must be in the future")

    for attempt in range(1, config.REFERRAL_CODE_MAX_ATTEMPTS + 1):
        code = generate_referral_code(affiliate_id, config=config)
        try:
            with store_guard(db, "referrals.issue_code"):
                link = create_referral_link(
                    db,
                    affiliate_id=affiliate_id,
                    referral_type=ReferralTypeEnum.CODE,
                    referral_code=code,
                    expires_at=expires_at,
                )
        except ConflictError:
            logger.warning(
                "referral_code.collision",
                extra={"affiliate_id": affiliate_id, "attempt": attempt},
            )
            continue
        logger.info(
            "referral_code.issued",
            extra={"affiliate_id": affiliate_id, "referral_code": link.referral_code},
        )
        return link
    raise ConflictError(
        f"Could not issue a unique referral code after {config.REFERRAL_CODE_MAX_ATTEMPTS} attempts"
    )


def create_customer_referral(db: Session, affiliate_id: int, referred_user_id: str) -> ReferralLink:
    """Tie a customer to an affiliate. A customer belongs to at most one affiliate."""
    referred_user_id = (referred_user_id or "").strip()
    if not referred_user_id:
        raise ValidationError("referred_user_id is required")
    _require_active_affiliate(db, affiliate_id)
    with store_guard(db, "referrals.create_customer_referral"):
        link = create_referral_link(
            db,
            affiliate_id=affiliate_id,
            referral_type=ReferralTypeEnum.CUSTOMER_REFERRAL,
            referred_user_id=referred_user_id,
        )
    logger.info(
        "customer_referral.created",
        extra={"affiliate_id": affiliate_id, "referred_user_id": referred_user_id},
    )
    return link


def validate_referral_code(db: Session, code: str | None) -> bool:
    normalized = normalize_code(code)
    if not normalized:
        return False
    with store_guard(db, "referrals.validate_code"):
        return get_referral_by_code(db, code=normalized, now=utcnow()) is not None
