from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_recorder, idempotency_header
from app.core.enums import Capability
from app.core.security import Operator, check_station, require
from app.db.session import get_db
from app.schemas.dispense import DispenseIn, DispenseOut
from app.services.recorder import DispenseCommand, TransactionRecorder

router = APIRouter(prefix="/dispense", tags=["dispense"])


@router.post("", response_model=DispenseOut)
async def dispense(
    payload: DispenseIn,
    response: Response,
    header_key: Optional[str] = Depends(idempotency_header),
    db: AsyncSession = Depends(get_db),
    recorder: TransactionRecorder = Depends(get_recorder),
    operator: Operator = Depends(require(Capability.DISPENSE)),
):
    """Record fuel dispensed to a vehicle and debit its quota"""
    key = payload.idempotency_key or header_key
    if not key:
        raise HTTPException(status_code=400, detail="Idempotency key required (body or Idempotency-Key header)")

    check_station(operator, payload.station_id)

    result = await recorder.record(db, DispenseCommand(
        vehicle_id=payload.vehicle_id,
        station_id=payload.station_id,
        fuel_type=payload.fuel_type,
        amount=payload.amount,
        idempotency_key=key,
    ))

    if result.replayed:
        response.headers["Idempotent-Replay"] = "true"
    return DispenseOut(transaction_id=result.transaction_id, remaining_quota=float(result.remaining_quota))
