from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from affiliate_engine.models.enums import PayoutMethodEnum, PayoutStatusEnum


class PayoutRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    affiliate_id: int
    amount: Decimal
    method: PayoutMethodEnum
    status: PayoutStatusEnum
    request_date: datetime
    processed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
