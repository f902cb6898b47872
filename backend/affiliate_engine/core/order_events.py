"""
Hooks called from the order and payment flows.

Affiliate bookkeeping must never break checkout, so both entry points
log and count their failures and return None or an empty list instead
of raising.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from affiliate_engine.core.commissions import confirm_earned, create_pending
from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.errors import AffiliateEngineError
from affiliate_engine.core.logging import get_structured_logger
from affiliate_engine.core.metrics import record_attribution
from affiliate_engine.core.referrals import resolve_attribution
from affiliate_engine.models.commissions import Commission


logger = get_structured_logger(__name__)


def track_order_from_referral(
    db: Session,
    order_id: str,
    order_total,
    referral_code: str | None = None,
    referred_user_id: str | None = None,
    *,
    config: Settings | None = None,
) -> Commission | None:
    config = config or get_settings()
    if not referral_code and not referred_user_id:
        record_attribution("none")
        return None
    try:
        attribution = resolve_attribution(
            db,
            order_id,
            referral_code=referral_code,
            referred_user_id=referred_user_id,
        )
        if attribution is None:
            record_attribution("none")
            return None
        record_attribution(attribution.referral_type.value)
        return create_pending(
            db,
            attribution.affiliate_id,
            order_id,
            order_total,
            referral_type=attribution.referral_type,
            referral_code=attribution.referral_code,
            referred_user_id=attribution.referred_user_id or referred_user_id,
            config=config,
        )
    except AffiliateEngineError as exc:
        record_attribution("error")
        logger.error(
            "order.attribution_failed",
            extra={"order_id": order_id, "error_code": exc.code},
        )
    except Exception:
        record_attribution("error")
        logger.exception("order.attribution_failed", extra={"order_id": order_id})
    return None


def handle_payment_confirmed(db: Session, order_id: str, transaction_id: str) -> list[Commission]:
    try:
        return confirm_earned(db, order_id, transaction_id)
    except AffiliateEngineError as exc:
        logger.error(
            "payment.commission_update_failed",
            extra={"order_id": order_id, "error_code": exc.code},
        )
    except Exception:
        logger.exception("payment.commission_update_failed", extra={"order_id": order_id})
    return []
