import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_ledger, get_quota_cache
from app.core.enums import Capability, OperatorRole
from app.core.response_builders import build_quota_response
from app.core.security import Operator, require
from app.db.session import get_db
from app.models.vehicle import Vehicle
from app.schemas.quota import BulkAllocateIn, BulkAllocateOut, QuotaOut, RolloverIn
from app.services.allocation import allocate_period, default_allocation, month_period
from app.services.ledger import QuotaLedger
from app.services.quota_cache import QuotaCache
from app.services.registry import find_vehicle_by_registration, get_vehicle, list_vehicles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quota", tags=["quota"])


def check_ownership(vehicle: Vehicle, operator: Operator) -> None:
    if operator.role == OperatorRole.VEHICLE_OWNER and vehicle.owner_ref != operator.subject:
        raise HTTPException(status_code=403, detail="Not authorized to view this vehicle")


async def _quota_view(db: AsyncSession, vehicle_id: int, ledger: QuotaLedger, cache: QuotaCache) -> QuotaOut:
    snapshot = await cache.get(vehicle_id, ledger.clock())
    if snapshot is None:
        generation = await cache.generation(vehicle_id)
        snapshot = await ledger.get_quota(db, vehicle_id)
        await cache.put(snapshot, generation)
    return build_quota_response(snapshot)


@router.get("/registration/{registration_number}", response_model=QuotaOut)
async def get_quota_by_registration(
    registration_number: str,
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_ledger),
    cache: QuotaCache = Depends(get_quota_cache),
    operator: Operator = Depends(require(Capability.VIEW_QUOTA)),
):
    vehicle = await find_vehicle_by_registration(db, registration_number)
    check_ownership(vehicle, operator)
    return await _quota_view(db, vehicle.id, ledger, cache)


@router.get("/{vehicle_id}", response_model=QuotaOut)
async def get_quota(
    vehicle_id: int,
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_ledger),
    cache: QuotaCache = Depends(get_quota_cache),
    operator: Operator = Depends(require(Capability.VIEW_QUOTA)),
):
    if operator.role == OperatorRole.VEHICLE_OWNER:
        check_ownership(await get_vehicle(db, vehicle_id), operator)
    return await _quota_view(db, vehicle_id, ledger, cache)


@router.post("/bulk-allocate", response_model=BulkAllocateOut)
async def bulk_allocate(
    payload: BulkAllocateIn,
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_ledger),
    operator: Operator = Depends(require(Capability.MANAGE_QUOTAS)),
):
    """Start a new monthly allocation for every vehicle matching the filters"""
    try:
        period_start, period_end = month_period(payload.month)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    vehicles = await list_vehicles(db, payload.vehicle_type, payload.fuel_type)
    affected, failed = await allocate_period(db, ledger, vehicles, period_start, period_end, payload.quota_amount)
    logger.info(f"Bulk allocation by {operator.subject}: {affected} affected, {failed} failed")
    return BulkAllocateOut(affected_vehicles=affected, failed_vehicles=failed)


@router.post("/{vehicle_id}/rollover", response_model=QuotaOut)
async def rollover_quota(
    vehicle_id: int,
    payload: RolloverIn,
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_ledger),
    operator: Operator = Depends(require(Capability.MANAGE_QUOTAS)),
):
    vehicle = await get_vehicle(db, vehicle_id)

    if (payload.period_start is None) != (payload.period_end is None):
        raise HTTPException(status_code=422, detail="period_start and period_end must be given together")
    if payload.period_start is None:
        period_start, period_end = month_period()
    else:
        period_start, period_end = payload.period_start, payload.period_end

    amount = payload.allocated_amount or default_allocation(
        vehicle.vehicle_type, vehicle.fuel_type, vehicle.engine_capacity
    )
    try:
        snapshot = await ledger.rollover(db, vehicle.id, amount, period_start, period_end)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return build_quota_response(snapshot)
