from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
)

from affiliate_engine.core.db import Base
from affiliate_engine.core.time import utcnow
from affiliate_engine.models.enums import PayoutMethodEnum, PayoutStatusEnum
from affiliate_engine.models.mixins import TimestampMixin, string_enum


class Payout(TimestampMixin, Base):
    __tablename__ = "affiliate_payouts"
    __table_args__ = (
        Index("ix_affiliate_payouts_affiliate_status", "affiliate_id", "status"),
        CheckConstraint("amount > 0", name="ck_affiliate_payouts_amount"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(string_enum(PayoutMethodEnum, "payout_method_enum"), nullable=False)
    status = Column(
        string_enum(PayoutStatusEnum, "payout_status_enum"),
        nullable=False,
        default=PayoutStatusEnum.PENDING,
    )
    request_date = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
