"""Default monthly allocations, in liters, by fuel and vehicle type."""
import logging
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FuelType
from app.core.errors import FuelQuotaError
from app.models.vehicle import Vehicle
from app.utils.dates import month_bounds, parse_month, report_zone, utcnow

logger = logging.getLogger(__name__)

PETROL_QUOTA = {
    "car": Decimal("60"),
    "motorcycle": Decimal("20"),
    "three wheeler": Decimal("40"),
}
DIESEL_QUOTA = {
    "car": Decimal("80"),
    "bus": Decimal("200"),
    "lorry": Decimal("200"),
}
LARGE_ENGINE_CC = 1800.0
LARGE_ENGINE_BONUS = Decimal("20")


def default_allocation(vehicle_type: str, fuel_type: FuelType, engine_capacity: Optional[float] = None) -> Decimal:
    kind = (vehicle_type or "").strip().lower()
    if fuel_type == FuelType.DIESEL:
        return DIESEL_QUOTA.get(kind, DIESEL_QUOTA["car"])

    amount = PETROL_QUOTA.get(kind, PETROL_QUOTA["car"])
    if kind == "car" and engine_capacity and engine_capacity > LARGE_ENGINE_CC:
        amount += LARGE_ENGINE_BONUS
    return amount


def month_period(month: Optional[str] = None, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """Calendar month bounds in the reporting zone; the current month when none is given."""
    tz = tz or report_zone()
    if month:
        year, mon = parse_month(month)
    else:
        today = utcnow().astimezone(tz).date()
        year, mon = today.year, today.month
    return month_bounds(year, mon, tz)


async def allocate_period(
    db: AsyncSession,
    ledger,
    vehicles: Iterable[Vehicle],
    period_start: datetime,
    period_end: datetime,
    amount: Optional[Decimal] = None,
) -> Tuple[int, int]:
    """Roll every vehicle over to a fresh allocation; returns (affected, failed)."""
    affected = failed = 0
    for vehicle in vehicles:
        quota = amount or default_allocation(vehicle.vehicle_type, vehicle.fuel_type, vehicle.engine_capacity)
        try:
            await ledger.rollover(db, vehicle.id, quota, period_start, period_end)
            affected += 1
        except FuelQuotaError as e:
            failed += 1
            logger.warning(f"Allocation failed for vehicle {vehicle.id}: {e.message}")
    logger.info(f"Allocated {period_start.date()}..{period_end.date()}: {affected} vehicle(s), {failed} failed")
    return affected, failed
