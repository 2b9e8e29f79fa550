from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel

from app.core.enums import TrendBucket


class PeakDay(BaseModel):
    day: date
    amount: float


class PeakHour(BaseModel):
    hour: int
    count: int


class DailyTotal(BaseModel):
    day: date
    amount: float


class StationReport(BaseModel):
    station_id: int
    station_name: Optional[str] = None
    period_start_date: date
    period_end_date: date
    total_transactions: int
    total_fuel_dispensed: float
    by_fuel_type: Dict[str, float]
    daily_totals: List[DailyTotal]
    average_per_transaction: float
    peak_day: Optional[PeakDay] = None
    peak_hour: Optional[PeakHour] = None


class TopConsumer(BaseModel):
    vehicle_id: int
    registration_number: str
    total_fuel_consumed: float
    transaction_count: int
    average_per_transaction: float
    last_transaction_date: date


class FuelConsumptionReport(BaseModel):
    period_start_date: date
    period_end_date: date
    total_petrol_consumed: float
    total_diesel_consumed: float
    total_fuel_consumed: float
    total_transactions: int
    average_fuel_per_transaction: float
    most_active_station: Optional[str] = None
    peak_consumption_day: Optional[PeakDay] = None


class StationPerformanceReport(BaseModel):
    period_start_date: date
    period_end_date: date
    total_active_stations: int
    total_transactions: int
    total_fuel_dispensed: float
    top_performing_station: Optional[str] = None
    least_active_station: Optional[str] = None
    average_transactions_per_station: float
    average_fuel_per_station: float


class UsageTrendPoint(BaseModel):
    bucket: date
    total_amount: float
    transaction_count: int
    unique_vehicles: int
    active_stations: int


class UsageTrends(BaseModel):
    period_start_date: date
    period_end_date: date
    bucket: TrendBucket
    points: List[UsageTrendPoint]


class QuotaUtilizationReport(BaseModel):
    period: str
    total_vehicles: int
    total_quota_allocated: float
    total_quota_used: float
    total_quota_remaining: float
    utilization_percentage: float
    vehicles_fully_utilized: int
    vehicles_not_used: int
    average_utilization_per_vehicle: float


class RebuildOut(BaseModel):
    transactions: int
    consistent: bool
