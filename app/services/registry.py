"""Vehicle and station lookups.

The registries are owned by other teams; this service reads them and keeps
just enough write surface to bootstrap its own data.
"""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FuelType
from app.core.errors import AlreadyRegistered, NotFound, storage_errors
from app.models.station import Station
from app.models.vehicle import Vehicle
from app.schemas.registry import StationCreate, VehicleCreate

logger = logging.getLogger(__name__)


async def get_vehicle(db: AsyncSession, vehicle_id: int) -> Vehicle:
    with storage_errors():
        vehicle = await db.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFound("Vehicle", vehicle_id)
    return vehicle


async def find_vehicle_by_registration(db: AsyncSession, registration_number: str) -> Vehicle:
    normalized = registration_number.strip().upper()
    with storage_errors():
        res = await db.execute(select(Vehicle).where(Vehicle.registration_number == normalized))
    vehicle = res.scalars().first()
    if vehicle is None:
        raise NotFound("Vehicle", normalized)
    return vehicle


async def list_vehicles(
    db: AsyncSession,
    vehicle_type: Optional[str] = None,
    fuel_type: Optional[FuelType] = None,
) -> List[Vehicle]:
    q = select(Vehicle).order_by(Vehicle.id)
    if vehicle_type and vehicle_type.lower() != "all":
        q = q.where(func.lower(Vehicle.vehicle_type) == vehicle_type.lower())
    if fuel_type:
        q = q.where(Vehicle.fuel_type == fuel_type)
    with storage_errors():
        res = await db.execute(q)
    return list(res.scalars().all())


async def register_vehicle(db: AsyncSession, payload: VehicleCreate) -> Vehicle:
    vehicle = Vehicle(
        registration_number=payload.registration_number.strip().upper(),
        chassis_number=payload.chassis_number,
        vehicle_type=payload.vehicle_type,
        fuel_type=payload.fuel_type,
        engine_capacity=payload.engine_capacity,
        owner_ref=payload.owner_ref,
    )
    db.add(vehicle)
    try:
        with storage_errors():
            await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyRegistered(registration_number=vehicle.registration_number)
    await db.refresh(vehicle)
    logger.info(f"Registered vehicle {vehicle.registration_number} ({vehicle.fuel_type})")
    return vehicle


async def remove_vehicle(db: AsyncSession, vehicle_id: int) -> None:
    """Undo a registration whose first allocation could not be opened."""
    with storage_errors():
        await db.execute(delete(Vehicle).where(Vehicle.id == vehicle_id))
        await db.commit()
    logger.warning(f"Removed vehicle {vehicle_id}: its first allocation failed")


async def get_station(db: AsyncSession, station_id: int) -> Station:
    with storage_errors():
        station = await db.get(Station, station_id)
    if station is None:
        raise NotFound("Fuel station", station_id)
    return station


async def register_station(db: AsyncSession, payload: StationCreate) -> Station:
    station = Station(**payload.model_dump())
    db.add(station)
    try:
        with storage_errors():
            await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyRegistered(registration_number=payload.registration_number)
    await db.refresh(station)
    return station


async def set_station_active(db: AsyncSession, station_id: int, active: bool) -> Station:
    station = await get_station(db, station_id)
    station.active = active
    with storage_errors():
        await db.commit()
    await db.refresh(station)
    logger.info(f"Station {station.id} is now {'active' if active else 'inactive'}")
    return station


async def count_active_stations(db: AsyncSession) -> int:
    with storage_errors():
        res = await db.execute(select(func.count(Station.id)).where(Station.active.is_(True)))
    return int(res.scalar_one())
