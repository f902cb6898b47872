import os
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, StatementError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import affiliate_engine.models  # noqa: F401
from affiliate_engine.core.db import init_db
from affiliate_engine.models.affiliates import CommissionTier
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, ReferralTypeEnum
from affiliate_engine.models.payouts import Payout
from affiliate_engine.models.referrals import ReferralLink
from tests.factories import make_pending_affiliate


@pytest.fixture
def db_session(tmp_path):
    db_url = f"sqlite:///{tmp_path}/constraints_test.db"
    engine = create_engine(db_url, future=True)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    init_db(engine)
    with TestingSessionLocal() as session:
        yield session
    engine.dispose()


def _commission(affiliate_id, order_id, **overrides):
    values = dict(
        affiliate_id=affiliate_id,
        order_id=order_id,
        order_total=Decimal("10.00"),
        rate=Decimal("3.00"),
        amount=Decimal("0.30"),
        referral_type=ReferralTypeEnum.CODE,
        status=CommissionStatusEnum.PENDING,
    )
    values.update(overrides)
    return Commission(**values)


def test_commission_order_id_unique(db_session):
    affiliate = make_pending_affiliate(db_session)
    db_session.add(_commission(affiliate.id, "order-1"))
    db_session.commit()

    db_session.add(_commission(affiliate.id, "order-1"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_commission_status_is_closed(db_session):
    affiliate = make_pending_affiliate(db_session)
    db_session.add(_commission(affiliate.id, "order-2", status="refunded"))
    with pytest.raises(StatementError):
        db_session.commit()
    db_session.rollback()

    db_session.add(_commission(affiliate.id, "order-3"))
    db_session.commit()
    with pytest.raises(IntegrityError):
        db_session.execute(text("UPDATE affiliate_commissions SET status = 'refunded'"))
        db_session.commit()
    db_session.rollback()


def test_referral_link_has_exactly_one_target(db_session):
    affiliate = make_pending_affiliate(db_session)
    db_session.add(
        ReferralLink(
            affiliate_id=affiliate.id,
            referral_type=ReferralTypeEnum.CODE,
            referral_code="AFFY-BOTH",
            referred_user_id="user-1",
        )
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()

    db_session.add(ReferralLink(affiliate_id=affiliate.id, referral_type=ReferralTypeEnum.CODE))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_payout_amount_positive(db_session):
    affiliate = make_pending_affiliate(db_session)
    db_session.add(Payout(affiliate_id=affiliate.id, amount=Decimal("0"), method="gateway"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_tier_range_checked(db_session):
    db_session.add(
        CommissionTier(name="Broken", min_orders=10, max_orders=5, commission_percentage=Decimal("4"))
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_get_db_yields_and_closes_session():
    from sqlalchemy.orm import Session

    from affiliate_engine.core.db import get_db

    generator = get_db()
    session = next(generator)
    assert isinstance(session, Session)
    generator.close()
