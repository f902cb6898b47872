import os
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import affiliate_engine.models  # noqa: F401
import affiliate_engine.core.payouts as payouts_module
from affiliate_engine.core.affiliates import suspend_affiliate
from affiliate_engine.core.commissions import create_pending, mark_commission_paid
from affiliate_engine.core.db import init_db
from affiliate_engine.core.errors import (
    InsufficientBalance,
    InvalidState,
    NotFound,
    ValidationError,
)
from affiliate_engine.core.payouts import (
    available_balance,
    list_payout_history,
    mark_payout_failed,
    mark_payout_paid,
    request_payout,
)
from affiliate_engine.models.enums import PayoutMethodEnum, PayoutStatusEnum
from affiliate_engine.models.payouts import Payout
from affiliate_engine.schemas.payouts import PayoutRead
from tests.factories import make_active_affiliate, make_earned_commission


@pytest.fixture
def session_factory(tmp_path):
    db_url = f"sqlite:///{tmp_path}/payouts_test.db"
    engine = create_engine(db_url, future=True, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    init_db(engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    with session_factory() as session:
        yield session


def test_request_payout_within_balance(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    make_earned_commission(db_session, affiliate=affiliate, order_total="1000")

    payout = request_payout(db_session, affiliate.id, Decimal("20.00"), "bank_transfer")
    assert payout.status == PayoutStatusEnum.PENDING
    assert payout.method == PayoutMethodEnum.BANK_TRANSFER
    assert payout.amount == Decimal("20.00")
    assert available_balance(db_session, affiliate.id) == Decimal("10.00")


def test_request_payout_over_balance(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    make_earned_commission(db_session, affiliate=affiliate, order_total="1000")
    create_pending(db_session, affiliate.id, "order-unpaid", Decimal("1000"))

    with pytest.raises(InsufficientBalance) as excinfo:
        request_payout(db_session, affiliate.id, "30.01", "gateway")
    assert excinfo.value.available_balance == Decimal("30.00")
    assert "30.00" in excinfo.value.message
    assert db_session.query(Payout).count() == 0


def test_request_payout_preconditions(db_session):
    with pytest.raises(NotFound):
        request_payout(db_session, 321, "1.00", "gateway")

    no_details, _ = make_active_affiliate(db_session, payout_details=False)
    make_earned_commission(db_session, affiliate=no_details)
    with pytest.raises(ValidationError):
        request_payout(db_session, no_details.id, "1.00", "gateway")

    affiliate, _ = make_active_affiliate(db_session)
    make_earned_commission(db_session, affiliate=affiliate)
    for bad_amount in ("0", "-5", "1.005", "abc"):
        with pytest.raises(ValidationError):
            request_payout(db_session, affiliate.id, bad_amount, "gateway")
    with pytest.raises(ValidationError):
        request_payout(db_session, affiliate.id, "1.00", "cheque")

    suspend_affiliate(db_session, affiliate.id, "review")
    with pytest.raises(InvalidState):
        request_payout(db_session, affiliate.id, "1.00", "gateway")


def test_failed_payout_frees_balance_and_paid_commissions_count(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    commission = make_earned_commission(db_session, affiliate=affiliate, order_total="1000")

    payout = request_payout(db_session, affiliate.id, "30.00", "mobile_money")
    assert available_balance(db_session, affiliate.id) == Decimal("0.00")

    failed = mark_payout_failed(db_session, payout.id, "account closed")
    assert failed.status == PayoutStatusEnum.FAILED
    assert failed.failure_reason == "account closed"
    assert available_balance(db_session, affiliate.id) == Decimal("30.00")

    second = request_payout(db_session, affiliate.id, "30.00", "gateway")
    mark_payout_paid(db_session, second.id)
    mark_commission_paid(db_session, commission.id)
    # Settling both sides leaves nothing to withdraw, not a negative balance.
    assert available_balance(db_session, affiliate.id) == Decimal("0.00")

    with pytest.raises(InvalidState):
        mark_payout_paid(db_session, second.id)
    with pytest.raises(InvalidState):
        mark_payout_failed(db_session, failed.id, "again")
    with pytest.raises(NotFound):
        mark_payout_paid(db_session, 999)


def test_overtaken_request_rechecks_balance(session_factory, monkeypatch):
    with session_factory() as setup:
        affiliate, _ = make_active_affiliate(setup)
        make_earned_commission(setup, affiliate=affiliate, order_total="1000")
        affiliate_id = affiliate.id

    real_balance = payouts_module.available_balance
    calls = {"count": 0}

    def balance_then_competitor(db, affiliate_id):
        balance = real_balance(db, affiliate_id)
        calls["count"] += 1
        if calls["count"] == 1:
            # Another request for the full balance lands after our read.
            with session_factory() as other:
                monkeypatch.setattr(payouts_module, "available_balance", real_balance)
                request_payout(other, affiliate_id, "30.00", "gateway")
                monkeypatch.setattr(payouts_module, "available_balance", balance_then_competitor)
        return balance

    monkeypatch.setattr(payouts_module, "available_balance", balance_then_competitor)

    with session_factory() as db:
        with pytest.raises(InsufficientBalance) as excinfo:
            request_payout(db, affiliate_id, "30.00", "gateway")
    assert excinfo.value.available_balance == Decimal("0.00")

    with session_factory() as check:
        payouts = check.query(Payout).filter(Payout.affiliate_id == affiliate_id).all()
        assert len(payouts) == 1
        assert sum(p.amount for p in payouts) == Decimal("30.00")


def test_payout_history(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    make_earned_commission(db_session, affiliate=affiliate, order_total="1000")
    first = request_payout(db_session, affiliate.id, "5.00", "gateway")
    second = request_payout(db_session, affiliate.id, "6.00", "gateway")
    mark_payout_failed(db_session, first.id, "bounced")

    page = list_payout_history(db_session, affiliate.id, page=1, limit=1)
    assert page.total == 2
    assert page.total_pages == 2
    assert page.items[0].id == second.id

    failed = list_payout_history(db_session, affiliate.id, status="failed")
    assert [p.id for p in failed.items] == [first.id]
    read = PayoutRead.model_validate(failed.items[0])
    assert read.status == PayoutStatusEnum.FAILED
    assert read.failure_reason == "bounced"
    assert read.amount == Decimal("5.00")
    with pytest.raises(ValidationError):
        list_payout_history(db_session, affiliate.id, status="lost")
