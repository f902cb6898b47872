from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from affiliate_engine.core.db import Base
from affiliate_engine.models.enums import ReferralTypeEnum
from affiliate_engine.models.mixins import TimestampMixin, string_enum


class ReferralLink(TimestampMixin, Base):
    __tablename__ = "affiliate_referrals"
    __table_args__ = (
        UniqueConstraint("referral_code", name="uq_affiliate_referrals_code"),
        UniqueConstraint("referred_user_id", name="uq_affiliate_referrals_referred_user"),
        Index("ix_affiliate_referrals_affiliate", "affiliate_id"),
        CheckConstraint(
            "(referral_code IS NOT NULL AND referred_user_id IS NULL)"
            " OR (referral_code IS NULL AND referred_user_id IS NOT NULL)",
            name="ck_affiliate_referrals_single_target",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    referral_type = Column(string_enum(ReferralTypeEnum, "referral_type_enum"), nullable=False)
    # Stored upper-case; lookups normalize before comparing.
    referral_code = Column(String(64), nullable=True)
    referred_user_id = Column(String(64), nullable=True)
    expires_at = Column(DateTime, nullable=True)
