from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator

from affiliate_engine.models.enums import AffiliateStatusEnum, AffiliateTypeEnum, ReferralTypeEnum


class AffiliateApplication(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    country: str = Field(min_length=1)
    promotion_channel: str = Field(min_length=1)
    platform_link: HttpUrl
    type: AffiliateTypeEnum
    company_name: Optional[str] = None
    terms_accepted: bool = True
    # Passed through to the admin notice only.
    audience_size: Optional[str] = None
    payout_method: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("company_name", mode="before")
    @classmethod
    def blank_company_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AffiliateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email: str
    phone: str
    company_name: Optional[str] = None
    type: AffiliateTypeEnum
    promotion_channel: str
    platform_link: str
    country: str
    status: AffiliateStatusEnum
    commission_tier: Decimal
    payout_details: Optional[dict[str, Any]] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    status_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReferralLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    affiliate_id: int
    referral_type: ReferralTypeEnum
    referral_code: Optional[str] = None
    referred_user_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class AffiliateStatusCounts(BaseModel):
    total: int = 0
    pending: int = 0
    active: int = 0
    rejected: int = 0
    suspended: int = 0
