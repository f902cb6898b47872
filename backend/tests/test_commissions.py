import os
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import affiliate_engine.models  # noqa: F401
import affiliate_engine.core.commissions as commissions_module
from affiliate_engine.core.commissions import (
    commission_history,
    confirm_earned,
    create_pending,
    dashboard_totals,
    mark_commission_paid,
)
from affiliate_engine.core.db import init_db
from affiliate_engine.core.errors import InvalidState, NotFound, StoreError, ValidationError
from affiliate_engine.crud.commissions import get_commission_by_order
from affiliate_engine.crud.tiers import seed_default_tiers, update_tier
from affiliate_engine.models.affiliates import CommissionTier
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, ReferralTypeEnum
from affiliate_engine.schemas.commissions import CommissionRead
from tests.factories import make_active_affiliate, make_earned_commission


@pytest.fixture
def db_session(tmp_path):
    db_url = f"sqlite:///{tmp_path}/commissions_test.db"
    engine = create_engine(db_url, future=True)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    init_db(engine)
    with TestingSessionLocal() as session:
        yield session
    engine.dispose()


def test_create_pending_computes_amount(db_session):
    seed_default_tiers(db_session)
    affiliate, link = make_active_affiliate(db_session)
    commission = create_pending(
        db_session,
        affiliate.id,
        "order-100",
        Decimal("1000"),
        referral_code=link.referral_code,
    )
    assert commission.status == CommissionStatusEnum.PENDING
    assert commission.rate == Decimal("3.00")
    assert commission.amount == Decimal("30.00")
    assert commission.referral_type == ReferralTypeEnum.CODE
    db_session.refresh(affiliate)
    assert affiliate.commission_tier == Decimal("3.00")


def test_amount_rounds_half_up(db_session):
    seed_default_tiers(db_session)
    affiliate, _ = make_active_affiliate(db_session)
    # 0.50 * 3% = 0.015 -> 0.02
    commission = create_pending(db_session, affiliate.id, "order-round", "0.50")
    assert commission.amount == Decimal("0.02")


def test_create_pending_is_idempotent(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    first = create_pending(db_session, affiliate.id, "order-dup", Decimal("200"))
    second = create_pending(db_session, affiliate.id, "order-dup", Decimal("999"))
    assert first.id == second.id
    assert second.order_total == Decimal("200.00")
    assert db_session.query(Commission).filter(Commission.order_id == "order-dup").count() == 1


def test_create_pending_recovers_from_concurrent_insert(db_session, monkeypatch):
    affiliate, _ = make_active_affiliate(db_session)
    winner = create_pending(db_session, affiliate.id, "order-race", Decimal("50"))

    # Simulate losing the race: the pre-insert lookup misses, the insert conflicts.
    lookups = iter([None, winner])
    monkeypatch.setattr(
        commissions_module,
        "get_commission_by_order",
        lambda db, *, order_id: next(lookups),
    )
    result = create_pending(db_session, affiliate.id, "order-race", Decimal("50"))
    assert result.id == winner.id
    assert db_session.query(Commission).count() == 1


def test_create_pending_validation(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    with pytest.raises(ValidationError):
        create_pending(db_session, affiliate.id, "", Decimal("10"))
    with pytest.raises(ValidationError):
        create_pending(db_session, affiliate.id, "order-neg", Decimal("-1"))
    with pytest.raises(ValidationError):
        create_pending(db_session, affiliate.id, "order-nan", "abc")
    with pytest.raises(NotFound):
        create_pending(db_session, 4242, "order-ghost", Decimal("10"))


def test_confirm_earned_once(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    create_pending(db_session, affiliate.id, "order-pay", Decimal("100"))

    earned = confirm_earned(db_session, "order-pay", "txn-1")
    assert len(earned) == 1
    assert earned[0].status == CommissionStatusEnum.EARNED
    assert earned[0].transaction_id == "txn-1"
    assert earned[0].earned_at is not None

    assert confirm_earned(db_session, "order-pay", "txn-2") == []
    commission = get_commission_by_order(db_session, order_id="order-pay")
    db_session.refresh(commission)
    assert commission.transaction_id == "txn-1"


def test_confirm_earned_unknown_order_is_noop(db_session):
    assert confirm_earned(db_session, "order-missing", "txn") == []
    with pytest.raises(ValidationError):
        confirm_earned(db_session, "order-missing", "")


def test_amount_frozen_after_tier_change(db_session):
    seed_default_tiers(db_session)
    affiliate, _ = make_active_affiliate(db_session)
    commission = create_pending(db_session, affiliate.id, "order-frozen", Decimal("100"))

    bronze = db_session.query(CommissionTier).filter(CommissionTier.name == "Bronze").one()
    update_tier(db_session, tier=bronze, updates={"commission_percentage": Decimal("10")})
    confirm_earned(db_session, "order-frozen", "txn-frozen")

    db_session.refresh(commission)
    assert commission.rate == Decimal("3.00")
    assert commission.amount == Decimal("3.00")

    later = create_pending(db_session, affiliate.id, "order-later", Decimal("100"))
    assert later.amount == Decimal("10.00")


def test_mark_commission_paid_only_from_earned(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    pending = create_pending(db_session, affiliate.id, "order-p", Decimal("100"))
    with pytest.raises(InvalidState):
        mark_commission_paid(db_session, pending.id)

    confirm_earned(db_session, "order-p", "txn-p")
    paid = mark_commission_paid(db_session, pending.id)
    assert paid.status == CommissionStatusEnum.PAID
    assert paid.paid_at is not None

    with pytest.raises(InvalidState):
        mark_commission_paid(db_session, pending.id)
    with pytest.raises(NotFound):
        mark_commission_paid(db_session, 999)


def test_dashboard_totals_partition(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    create_pending(db_session, affiliate.id, "order-a", Decimal("100"))
    make_earned_commission(db_session, affiliate=affiliate, order_total="200", order_id="order-b")
    settled = make_earned_commission(db_session, affiliate=affiliate, order_total="300", order_id="order-c")
    mark_commission_paid(db_session, settled.id)

    totals = dashboard_totals(db_session, affiliate.id)
    assert totals.total_pending == Decimal("3.00")
    assert totals.total_earned_unpaid == Decimal("6.00")
    assert totals.total_paid == Decimal("9.00")
    assert totals.total_earned == Decimal("15.00")

    everything = sum(c.amount for c in db_session.query(Commission).all())
    assert totals.total_pending + totals.total_earned_unpaid + totals.total_paid == everything


def test_commission_history_pagination(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    for index in range(5):
        make_earned_commission(db_session, affiliate=affiliate, order_id=f"order-h{index}")
    create_pending(db_session, affiliate.id, "order-h-pending", Decimal("10"))

    page = commission_history(db_session, affiliate.id, page=1, limit=2)
    assert page.total == 6
    assert page.total_pages == 3
    assert len(page.items) == 2
    # Most recently earned first; the pending one has no earned_at and sorts last.
    assert page.items[0].order_id == "order-h4"

    last = commission_history(db_session, affiliate.id, page=3, limit=2)
    assert last.items[-1].order_id == "order-h-pending"

    earned_only = commission_history(db_session, affiliate.id, status="earned", limit=50)
    assert earned_only.total == 5
    payload = [CommissionRead.model_validate(item).model_dump(mode="json") for item in earned_only.items]
    assert {item["status"] for item in payload} == {"earned"}
    assert all(item["earned_at"] for item in payload)

    with pytest.raises(ValidationError):
        commission_history(db_session, affiliate.id, sort_by="affiliate_id")
    with pytest.raises(ValidationError):
        commission_history(db_session, affiliate.id, limit=0)


def test_history_limit_is_capped(db_session):
    affiliate, _ = make_active_affiliate(db_session)
    page = commission_history(db_session, affiliate.id, limit=10_000)
    assert page.limit == 100


def test_store_failure_surfaces_as_store_error(db_session, monkeypatch):
    from sqlalchemy.exc import OperationalError

    affiliate, _ = make_active_affiliate(db_session)

    def _timeout(*args, **kwargs):
        raise OperationalError("UPDATE affiliate_commissions", {}, Exception("database is locked"))

    monkeypatch.setattr(commissions_module, "mark_order_commissions_earned", _timeout)
    with pytest.raises(StoreError) as excinfo:
        confirm_earned(db_session, "order-x", "txn-x")
    assert isinstance(excinfo.value.cause, OperationalError)
