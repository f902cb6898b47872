from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from affiliate_engine.models.enums import CommissionStatusEnum, ReferralTypeEnum


class CommissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    affiliate_id: int
    order_id: str
    order_total: Decimal
    rate: Decimal
    amount: Decimal
    referral_type: ReferralTypeEnum
    referral_code: Optional[str] = None
    referred_user_id: Optional[str] = None
    status: CommissionStatusEnum
    created_at: datetime
    earned_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    transaction_id: Optional[str] = None


class CommissionTotals(BaseModel):
    # total_earned counts earned and paid commissions (lifetime earnings).
    total_earned: Decimal
    total_pending: Decimal
    total_paid: Decimal
    # Earned but not yet settled; with total_pending and total_paid this
    # partitions every commission exactly once.
    total_earned_unpaid: Decimal


class CommissionTierRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    min_orders: int
    max_orders: Optional[int] = None
    commission_percentage: Decimal
    is_active: bool
