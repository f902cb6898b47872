from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel

from affiliate_engine.schemas.affiliates import AffiliateRead, AffiliateStatusCounts, ReferralLinkRead
from affiliate_engine.schemas.commissions import CommissionTotals


class AffiliatePerformance(BaseModel):
    conversions_90_days: int
    current_tier: Decimal


class AffiliateDashboard(BaseModel):
    affiliate: AffiliateRead
    earnings: CommissionTotals
    referral_codes: list[ReferralLinkRead]
    performance: AffiliatePerformance


class ProgramAnalytics(BaseModel):
    affiliate_stats: AffiliateStatusCounts
    commissions_total_earned: Decimal
    commissions_total_pending: Decimal
    payouts_total_paid: Decimal
