from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from affiliate_engine.models.affiliates import CommissionTier


DEFAULT_TIERS = (
    {"name": "Bronze", "min_orders": 0, "max_orders": 9, "commission_percentage": Decimal("3.00")},
    {"name": "Silver", "min_orders": 10, "max_orders": 29, "commission_percentage": Decimal("5.00")},
    {"name": "Gold", "min_orders": 30, "max_orders": None, "commission_percentage": Decimal("8.00")},
)


def list_active_tiers(db: Session) -> list[CommissionTier]:
    return (
        db.query(CommissionTier)
        .filter(CommissionTier.is_active.is_(True))
        .order_by(CommissionTier.min_orders.desc())
        .all()
    )


def get_lowest_active_tier(db: Session) -> CommissionTier | None:
    return (
        db.query(CommissionTier)
        .filter(CommissionTier.is_active.is_(True))
        .order_by(CommissionTier.min_orders.asc())
        .first()
    )


def create_tier(
    db: Session,
    *,
    name: str,
    min_orders: int,
    max_orders: int | None,
    commission_percentage: Decimal,
    is_active: bool = True,
) -> CommissionTier:
    tier = CommissionTier(
        name=name,
        min_orders=min_orders,
        max_orders=max_orders,
        commission_percentage=commission_percentage,
        is_active=is_active,
    )
    db.add(tier)
    db.commit()
    db.refresh(tier)
    return tier


def update_tier(db: Session, *, tier: CommissionTier, updates: dict) -> CommissionTier:
    for key, value in updates.items():
        setattr(tier, key, value)
    db.commit()
    db.refresh(tier)
    return tier


def seed_default_tiers(db: Session) -> list[CommissionTier]:
    if db.query(CommissionTier.id).first() is not None:
        return list_active_tiers(db)
    for payload in DEFAULT_TIERS:
        db.add(CommissionTier(is_active=True, **payload))
    db.commit()
    return list_active_tiers(db)
