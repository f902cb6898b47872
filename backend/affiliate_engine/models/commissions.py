from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from affiliate_engine.core.db import Base
from affiliate_engine.models.enums import CommissionStatusEnum, ReferralTypeEnum
from affiliate_engine.models.mixins import TimestampMixin, string_enum


class Commission(TimestampMixin, Base):
    __tablename__ = "affiliate_commissions"
    __table_args__ = (
        # At most one commission per order, system-wide.
        UniqueConstraint("order_id", name="uq_affiliate_commissions_order"),
        Index("ix_affiliate_commissions_affiliate_status", "affiliate_id", "status"),
        Index("ix_affiliate_commissions_earned_at", "earned_at"),
        CheckConstraint("amount >= 0", name="ck_affiliate_commissions_amount"),
        CheckConstraint("rate >= 0 AND rate <= 100", name="ck_affiliate_commissions_rate"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    order_id = Column(String(64), nullable=False)
    order_total = Column(Numeric(12, 2), nullable=False)
    rate = Column(Numeric(5, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    referral_type = Column(string_enum(ReferralTypeEnum, "commission_referral_type_enum"), nullable=False)
    referral_code = Column(String(64), nullable=True)
    referred_user_id = Column(String(64), nullable=True)
    status = Column(
        string_enum(CommissionStatusEnum, "commission_status_enum"),
        nullable=False,
        default=CommissionStatusEnum.PENDING,
    )
    earned_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    transaction_id = Column(String, nullable=True)
