from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import FuelType


class QuotaOut(BaseModel):
    vehicle_id: int
    allocated_quota: float
    used_quota: float
    remaining_quota: float
    usage_percentage: float
    expiring_soon: bool
    quota_start_date: datetime
    quota_end_date: datetime


class RolloverIn(BaseModel):
    allocated_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=3)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class BulkAllocateIn(BaseModel):
    vehicle_type: Optional[str] = None
    fuel_type: Optional[FuelType] = None
    quota_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=3)
    month: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")


class BulkAllocateOut(BaseModel):
    affected_vehicles: int
    failed_vehicles: int
