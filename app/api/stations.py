from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import Capability
from app.core.response_builders import build_station_response
from app.core.security import Operator, require
from app.db.session import get_db
from app.schemas.registry import StationCreate, StationOut, StationStatusUpdate
from app.services.registry import get_station, register_station, set_station_active

router = APIRouter(prefix="/stations", tags=["stations"])


@router.post("", response_model=StationOut, status_code=201)
async def create_station(
    payload: StationCreate,
    db: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require(Capability.MANAGE_REGISTRY)),
):
    return build_station_response(await register_station(db, payload))


@router.get("/{station_id}", response_model=StationOut)
async def read_station(
    station_id: int,
    db: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    return build_station_response(await get_station(db, station_id))


@router.patch("/{station_id}/status", response_model=StationOut)
async def update_station_status(
    station_id: int,
    payload: StationStatusUpdate,
    db: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require(Capability.MANAGE_REGISTRY)),
):
    """Open or close a station for dispensing"""
    return build_station_response(await set_station_active(db, station_id, payload.active))
