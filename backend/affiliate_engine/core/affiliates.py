from __future__ import annotations

from typing import Any

import pydantic
from sqlalchemy.orm import Session

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.db import store_guard
from affiliate_engine.core.errors import ConflictError, InvalidState, NotFound, ValidationError
from affiliate_engine.core.logging import get_structured_logger
from affiliate_engine.core.referrals import generate_referral_code
from affiliate_engine.core.tiers import entry_rate
from affiliate_engine.core.utils.pagination import Page, normalize_page, paginate
from affiliate_engine.crud.affiliates import (
    AFFILIATE_SORT_FIELDS,
    activate_with_referral_code,
    affiliates_query,
    create_affiliate,
    get_affiliate as crud_get_affiliate,
    transition_affiliate_status,
    update_affiliate,
)
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.enums import AffiliateStatusEnum
from affiliate_engine.models.referrals import ReferralLink
from affiliate_engine.notifications.dispatch import notify_safely
from affiliate_engine.notifications.mailer import (
    TEMPLATE_APPLICATION_RECEIVED,
    TEMPLATE_APPROVED,
    TEMPLATE_REJECTED,
    AffiliateMailer,
)
from affiliate_engine.schemas.affiliates import AffiliateApplication


logger = get_structured_logger(__name__)


def _validation_message(exc: pydantic.ValidationError) -> str:
    parts = []
    for error in exc.errors():
        field = ".".join(str(item) for item in error.get("loc", ())) or "application"
        parts.append(f"{field}: {error.get('msg')}")
    return "; ".join(parts)


def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required")
    return reason


def get_affiliate(db: Session, affiliate_id: int) -> Affiliate:
    with store_guard(db, "affiliates.get"):
        affiliate = crud_get_affiliate(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise NotFound(f"Affiliate {affiliate_id} not found")
    return affiliate


def _transition(
    db: Session,
    affiliate_id: int,
    *,
    from_status: AffiliateStatusEnum,
    to_status: AffiliateStatusEnum,
    status_reason: str | None,
    action: str,
) -> Affiliate:
    affiliate = get_affiliate(db, affiliate_id)
    if affiliate.status != from_status:
        raise InvalidState(
            f"Cannot {action} affiliate {affiliate_id} in status {affiliate.status.value}"
        )
    with store_guard(db, f"affiliates.{action}"):
        moved = transition_affiliate_status(
            db,
            affiliate_id=affiliate_id,
            from_status=from_status,
            to_status=to_status,
            status_reason=status_reason,
        )
    if not moved:
        # Someone else transitioned it between the read and the update.
        raise InvalidState(f"Affiliate {affiliate_id} is no longer {from_status.value}")
    db.refresh(affiliate)
    logger.info(
        f"affiliate.{to_status.value}",
        extra={"affiliate_id": affiliate_id, "from_status": from_status.value},
    )
    return affiliate


def submit_application(
    db: Session,
    application: Any,
    *,
    config: Settings | None = None,
    mailer: AffiliateMailer | None = None,
) -> Affiliate:
    config = config or get_settings()
    try:
        if isinstance(application, AffiliateApplication):
            payload = application
        else:
            payload = AffiliateApplication.model_validate(application)
    except pydantic.ValidationError as exc:
        raise ValidationError(_validation_message(exc)) from exc

    rate = entry_rate(db, config=config)
    with store_guard(db, "affiliates.submit_application"):
        affiliate = create_affiliate(
            db,
            full_name=payload.full_name,
            email=payload.email,
            phone=payload.phone,
            country=payload.country,
            promotion_channel=payload.promotion_channel,
            platform_link=str(payload.platform_link),
            affiliate_type=payload.type,
            commission_tier=rate,
            company_name=payload.company_name,
            terms_accepted=payload.terms_accepted,
        )
    logger.info("affiliate.applied", extra={"affiliate_id": affiliate.id})

    if config.AFFILIATE_ADMIN_EMAIL:
        notice = payload.model_dump(mode="json")
        notify_safely(
            TEMPLATE_APPLICATION_RECEIVED,
            lambda m: m.send_application_received(config.AFFILIATE_ADMIN_EMAIL, application=notice),
            mailer=mailer,
            config=config,
            affiliate_id=affiliate.id,
        )
    return affiliate


def approve_affiliate(
    db: Session,
    affiliate_id: int,
    approver_id: str,
    *,
    config: Settings | None = None,
    mailer: AffiliateMailer | None = None,
) -> tuple[Affiliate, ReferralLink]:
    """Activate a pending affiliate and issue its first referral code.

    The status change and the code are committed together. The welcome
    email goes out afterwards and cannot undo the approval.
    """
    config = config or get_settings()
    approver_id = (str(approver_id) if approver_id is not None else "").strip()
    if not approver_id:
        raise ValidationError("approver_id is required")
    affiliate = get_affiliate(db, affiliate_id)
    if affiliate.status != AffiliateStatusEnum.PENDING:
        raise InvalidState(
            f"Cannot approve affiliate {affiliate_id} in status {affiliate.status.value}"
        )

    link: ReferralLink | None = None
    for attempt in range(1, config.REFERRAL_CODE_MAX_ATTEMPTS + 1):
        code = generate_referral_code(affiliate_id, config=config)
        try:
            with store_guard(db, "affiliates.approve"):
                link = activate_with_referral_code(
                    db,
                    affiliate_id=affiliate_id,
                    approved_by=approver_id,
                    referral_code=code,
                )
        except ConflictError:
            logger.warning(
                "referral_code.collision",
                extra={"affiliate_id": affiliate_id, "attempt": attempt},
            )
            continue
        if link is None:
            raise InvalidState(f"Affiliate {affiliate_id} is no longer pending")
        break
    if link is None:
        raise ConflictError(
            f"Could not issue a unique referral code after {config.REFERRAL_CODE_MAX_ATTEMPTS} attempts"
        )

    db.refresh(affiliate)
    logger.info(
        "affiliate.approved",
        extra={
            "affiliate_id": affiliate_id,
            "approved_by": approver_id,
            "referral_code": link.referral_code,
        },
    )
    notify_safely(
        TEMPLATE_APPROVED,
        lambda m: m.send_approval_email(
            affiliate.email,
            full_name=affiliate.full_name,
            referral_code=link.referral_code,
        ),
        mailer=mailer,
        config=config,
        affiliate_id=affiliate_id,
    )
    return affiliate, link


def reject_affiliate(
    db: Session,
    affiliate_id: int,
    reason: str,
    *,
    config: Settings | None = None,
    mailer: AffiliateMailer | None = None,
) -> Affiliate:
    reason = _require_reason(reason)
    affiliate = _transition(
        db,
        affiliate_id,
        from_status=AffiliateStatusEnum.PENDING,
        to_status=AffiliateStatusEnum.REJECTED,
        status_reason=reason,
        action="reject",
    )
    notify_safely(
        TEMPLATE_REJECTED,
        lambda m: m.send_rejection_email(affiliate.email, full_name=affiliate.full_name, reason=reason),
        mailer=mailer,
        config=config,
        affiliate_id=affiliate_id,
    )
    return affiliate


def suspend_affiliate(db: Session, affiliate_id: int, reason: str) -> Affiliate:
    reason = _require_reason(reason)
    return _transition(
        db,
        affiliate_id,
        from_status=AffiliateStatusEnum.ACTIVE,
        to_status=AffiliateStatusEnum.SUSPENDED,
        status_reason=reason,
        action="suspend",
    )


def reactivate_affiliate(db: Session, affiliate_id: int) -> Affiliate:
    return _transition(
        db,
        affiliate_id,
        from_status=AffiliateStatusEnum.SUSPENDED,
        to_status=AffiliateStatusEnum.ACTIVE,
        status_reason=None,
        action="reactivate",
    )


def update_payout_details(db: Session, affiliate_id: int, payout_details: dict) -> Affiliate:
    if not isinstance(payout_details, dict) or not payout_details:
        raise ValidationError("payout_details must be a non-empty object")
    affiliate = get_affiliate(db, affiliate_id)
    if affiliate.status == AffiliateStatusEnum.REJECTED:
        raise InvalidState(f"Affiliate {affiliate_id} was rejected")
    with store_guard(db, "affiliates.update_payout_details"):
        affiliate = update_affiliate(db, affiliate=affiliate, updates={"payout_details": dict(payout_details)})
    logger.info("affiliate.payout_details_updated", extra={"affiliate_id": affiliate_id})
    return affiliate


def list_affiliates(
    db: Session,
    page: int | None = 1,
    limit: int | None = None,
    status: AffiliateStatusEnum | str | None = None,
    sort_by: str = "created_at",
    *,
    config: Settings | None = None,
) -> Page:
    config = config or get_settings()
    if sort_by not in AFFILIATE_SORT_FIELDS:
        raise ValidationError(f"Cannot sort affiliates by {sort_by}")
    if status is not None:
        try:
            status = AffiliateStatusEnum(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown affiliate status {status}") from exc
    page, limit = normalize_page(
        page,
        limit,
        default_limit=config.HISTORY_DEFAULT_LIMIT,
        max_limit=config.HISTORY_MAX_LIMIT,
    )
    with store_guard(db, "affiliates.list"):
        return paginate(affiliates_query(db, status=status, sort_by=sort_by), page=page, limit=limit)
