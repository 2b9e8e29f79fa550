from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import FuelType, TransactionStatus


class DispenseIn(BaseModel):
    vehicle_id: int
    station_id: int
    fuel_type: FuelType
    # Range is enforced by the compatibility guard so it reports a typed error.
    amount: Decimal = Field(max_digits=12, decimal_places=3)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class DispenseOut(BaseModel):
    transaction_id: int
    remaining_quota: float


class TransactionOut(BaseModel):
    id: int
    vehicle_id: int
    station_id: int
    fuel_type: FuelType
    amount: float
    quota_before: float
    quota_after: float
    timestamp: datetime
    status: TransactionStatus
    notified_at: Optional[datetime] = None
