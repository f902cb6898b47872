from __future__ import annotations

from sqlalchemy.orm import Session

from affiliate_engine.core.affiliates import get_affiliate
from affiliate_engine.core.commissions import dashboard_totals
from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.db import store_guard
from affiliate_engine.core.tiers import conversions_in_window, rate_for
from affiliate_engine.crud.affiliates import count_affiliates_by_status
from affiliate_engine.crud.commissions import sum_commissions
from affiliate_engine.crud.payouts import sum_payouts
from affiliate_engine.crud.referral_links import list_referral_codes
from affiliate_engine.models.enums import AffiliateStatusEnum, CommissionStatusEnum, PayoutStatusEnum
from affiliate_engine.schemas.affiliates import AffiliateRead, AffiliateStatusCounts, ReferralLinkRead
from affiliate_engine.schemas.dashboard import AffiliateDashboard, AffiliatePerformance, ProgramAnalytics


def affiliate_dashboard(
    db: Session,
    affiliate_id: int,
    *,
    config: Settings | None = None,
) -> AffiliateDashboard:
    config = config or get_settings()
    affiliate = get_affiliate(db, affiliate_id)
    earnings = dashboard_totals(db, affiliate_id)
    with store_guard(db, "dashboard.referral_codes"):
        # Codes without an expiry are the affiliate's standing codes.
        codes = list_referral_codes(db, affiliate_id=affiliate_id, without_expiry_only=True)
    return AffiliateDashboard(
        affiliate=AffiliateRead.model_validate(affiliate),
        earnings=earnings,
        referral_codes=[ReferralLinkRead.model_validate(code) for code in codes],
        performance=AffiliatePerformance(
            conversions_90_days=conversions_in_window(db, affiliate_id, config=config),
            current_tier=rate_for(db, affiliate_id, config=config),
        ),
    )


def program_analytics(db: Session) -> ProgramAnalytics:
    with store_guard(db, "dashboard.program_analytics"):
        by_status = count_affiliates_by_status(db)
        total_earned = sum_commissions(
            db, statuses=(CommissionStatusEnum.EARNED, CommissionStatusEnum.PAID)
        )
        total_pending = sum_commissions(db, statuses=(CommissionStatusEnum.PENDING,))
        payouts_paid = sum_payouts(db, statuses=(PayoutStatusEnum.PAID,))
    counts = {status.value: by_status.get(status, 0) for status in AffiliateStatusEnum}
    return ProgramAnalytics(
        affiliate_stats=AffiliateStatusCounts(total=sum(counts.values()), **counts),
        commissions_total_earned=total_earned,
        commissions_total_pending=total_pending,
        payouts_total_paid=payouts_paid,
    )
