import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_ledger
from app.core.enums import Capability
from app.core.response_builders import build_vehicle_response
from app.core.security import Operator, require
from app.db.session import get_db
from app.schemas.registry import VehicleCreate, VehicleOut
from app.services.allocation import default_allocation, month_period
from app.services.ledger import QuotaLedger
from app.services.registry import get_vehicle, register_vehicle, remove_vehicle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.post("", response_model=VehicleOut, status_code=201)
async def create_vehicle(
    payload: VehicleCreate,
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_ledger),
    operator: Operator = Depends(require(Capability.MANAGE_REGISTRY)),
):
    """Register a vehicle and open its first monthly allocation.

    Both steps succeed or the registration is removed again, so a failed
    request can be retried as a whole.
    """
    vehicle = await register_vehicle(db, payload)
    vehicle_id = vehicle.id
    response = build_vehicle_response(vehicle)

    period_start, period_end = month_period()
    amount = default_allocation(vehicle.vehicle_type, vehicle.fuel_type, vehicle.engine_capacity)
    try:
        await ledger.rollover(db, vehicle_id, amount, period_start, period_end)
    except Exception:
        await remove_vehicle(db, vehicle_id)
        raise
    return response


@router.get("/{vehicle_id}", response_model=VehicleOut)
async def read_vehicle(
    vehicle_id: int,
    db: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require(Capability.VIEW_QUOTA)),
):
    return build_vehicle_response(await get_vehicle(db, vehicle_id))
