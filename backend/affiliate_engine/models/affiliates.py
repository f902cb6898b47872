from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from affiliate_engine.core.db import Base
from affiliate_engine.models.enums import AffiliateStatusEnum, AffiliateTypeEnum
from affiliate_engine.models.mixins import TimestampMixin, string_enum


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class Affiliate(TimestampMixin, Base):
    __tablename__ = "affiliates"
    __table_args__ = (
        Index("ix_affiliates_status", "status"),
        Index("ix_affiliates_email", "email"),
        CheckConstraint("payout_version >= 0", name="ck_affiliates_payout_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    type = Column(string_enum(AffiliateTypeEnum, "affiliate_type_enum"), nullable=False)
    promotion_channel = Column(String, nullable=False)
    platform_link = Column(String, nullable=False)
    country = Column(String, nullable=False)
    terms_accepted = Column(Boolean, nullable=False, default=False)
    status = Column(
        string_enum(AffiliateStatusEnum, "affiliate_status_enum"),
        nullable=False,
        default=AffiliateStatusEnum.PENDING,
    )
    # Informational: rate applied to the affiliate's most recent commission.
    commission_tier = Column(Numeric(5, 2), nullable=False, default=3)
    payout_details = Column(JSON_TYPE, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String, nullable=True)
    # Rejection or suspension reason; cleared on reactivation.
    status_reason = Column(Text, nullable=True)
    # Bumped by every accepted payout request; guards the balance check.
    payout_version = Column(Integer, nullable=False, default=0)


class CommissionTier(TimestampMixin, Base):
    __tablename__ = "affiliate_commission_tiers"
    __table_args__ = (
        UniqueConstraint("min_orders", name="uq_affiliate_commission_tiers_min_orders"),
        CheckConstraint("min_orders >= 0", name="ck_affiliate_commission_tiers_min"),
        CheckConstraint(
            "max_orders IS NULL OR max_orders >= min_orders",
            name="ck_affiliate_commission_tiers_range",
        ),
        CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage <= 100",
            name="ck_affiliate_commission_tiers_percentage",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    min_orders = Column(Integer, nullable=False)
    max_orders = Column(Integer, nullable=True)
    commission_percentage = Column(Numeric(5, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
