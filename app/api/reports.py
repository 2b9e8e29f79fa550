from datetime import date, timedelta
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_analytics, get_ledger
from app.core.enums import Capability, FuelType, TrendBucket
from app.core.security import Operator, check_station, require
from app.db.session import get_db
from app.schemas.reports import (
    FuelConsumptionReport,
    QuotaUtilizationReport,
    RebuildOut,
    StationPerformanceReport,
    StationReport,
    TopConsumer,
    UsageTrends,
)
from app.services.allocation import month_period
from app.services.analytics import AnalyticsEngine
from app.services.ledger import QuotaLedger
from app.services.registry import count_active_stations, get_station
from app.utils.dates import utcnow

router = APIRouter(prefix="/reports", tags=["reports"])

DEFAULT_WINDOW_DAYS = 30


def report_dates(analytics: AnalyticsEngine, start_date: Optional[date], end_date: Optional[date]) -> Tuple[date, date]:
    """Inclusive date range; the last 30 local days when not given."""
    end = end_date or utcnow().astimezone(analytics.tz).date()
    start = start_date or end - timedelta(days=DEFAULT_WINDOW_DAYS - 1)
    if end < start:
        raise HTTPException(status_code=422, detail="end_date must not be before start_date")
    return start, end


@router.get("/fuel-consumption", response_model=FuelConsumptionReport)
async def fuel_consumption(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    fuel_type: Optional[FuelType] = Query(None),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    start, end = report_dates(analytics, start_date, end_date)
    await analytics.catch_up(db)
    return analytics.fuel_consumption(start, end, fuel_type)


@router.get("/quota-utilization", response_model=QuotaUtilizationReport)
async def quota_utilization(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_ledger),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    try:
        period_start, period_end = month_period(month, analytics.tz)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    allocations = await ledger.allocations_starting_between(db, period_start, period_end)
    return analytics.quota_utilization(
        ((a.allocated_amount, a.used_amount) for a in allocations),
        period=month or period_start.strftime("%Y-%m"),
    )


@router.get("/station-performance", response_model=StationPerformanceReport)
async def station_performance(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    start, end = report_dates(analytics, start_date, end_date)
    await analytics.catch_up(db)
    active = await count_active_stations(db)
    return analytics.station_performance(start, end, active)


@router.get("/top-consumers", response_model=List[TopConsumer])
async def top_consumers(
    limit: int = Query(10, ge=1, le=100),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    start, end = report_dates(analytics, start_date, end_date)
    await analytics.catch_up(db)
    return analytics.top_consumers(limit, start, end)


@router.get("/usage-trends", response_model=UsageTrends)
async def usage_trends(
    bucket: TrendBucket = Query(TrendBucket.DAY),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    start, end = report_dates(analytics, start_date, end_date)
    await analytics.catch_up(db)
    return analytics.usage_trends(start, end, bucket)


@router.get("/stations/{station_id}", response_model=StationReport)
async def station_report(
    station_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    check_station(operator, station_id)

    start, end = report_dates(analytics, start_date, end_date)
    station = await get_station(db, station_id)
    await analytics.catch_up(db)
    report = analytics.station_report(station.id, start, end)
    report.station_name = station.name
    return report


@router.post("/rebuild", response_model=RebuildOut)
async def rebuild_analytics(
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsEngine = Depends(get_analytics),
    operator: Operator = Depends(require(Capability.MANAGE_QUOTAS)),
):
    """Recompute every aggregate from the transaction log and report whether they matched"""
    consistent = await analytics.load_all(db)
    return RebuildOut(transactions=len(analytics), consistent=consistent)
