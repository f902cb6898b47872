from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.db import store_guard
from affiliate_engine.core.time import as_utc, utcnow
from affiliate_engine.crud.commissions import count_earned_between
from affiliate_engine.crud.tiers import get_lowest_active_tier, list_active_tiers
from affiliate_engine.models.affiliates import CommissionTier


def select_tier(tiers: Iterable[CommissionTier], count: int) -> CommissionTier | None:
    """Active tier whose [min_orders, max_orders] range holds ``count``.

    When ranges overlap the tier with the greatest min_orders wins.
    """
    best: CommissionTier | None = None
    for tier in tiers:
        if not tier.is_active:
            continue
        if tier.min_orders > count:
            continue
        if tier.max_orders is not None and tier.max_orders < count:
            continue
        if best is None or tier.min_orders > best.min_orders:
            best = tier
    return best


def conversions_in_window(
    db: Session,
    affiliate_id: int,
    *,
    as_of: datetime | None = None,
    config: Settings | None = None,
) -> int:
    config = config or get_settings()
    until = as_utc(as_of) if as_of is not None else utcnow()
    since = until - timedelta(days=config.TIER_WINDOW_DAYS)
    with store_guard(db, "tiers.count_conversions"):
        return int(count_earned_between(db, affiliate_id=affiliate_id, since=since, until=until))


def rate_for(
    db: Session,
    affiliate_id: int,
    as_of: datetime | None = None,
    *,
    config: Settings | None = None,
) -> Decimal:
    """Commission percentage for the affiliate's next order. Never cached."""
    config = config or get_settings()
    count = conversions_in_window(db, affiliate_id, as_of=as_of, config=config)
    with store_guard(db, "tiers.list_active"):
        tiers = list_active_tiers(db)
    tier = select_tier(tiers, count)
    if tier is None:
        return Decimal(config.DEFAULT_COMMISSION_RATE)
    return Decimal(tier.commission_percentage)


def entry_rate(db: Session, *, config: Settings | None = None) -> Decimal:
    """Rate a brand-new affiliate starts on."""
    config = config or get_settings()
    with store_guard(db, "tiers.lowest_active"):
        tier = get_lowest_active_tier(db)
    if tier is None:
        return Decimal(config.DEFAULT_COMMISSION_RATE)
    return Decimal(tier.commission_percentage)
