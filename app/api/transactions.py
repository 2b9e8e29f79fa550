from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_recorder
from app.core.enums import Capability
from app.core.errors import NotFound, storage_errors
from app.core.response_builders import build_transaction_response
from app.core.security import Operator, require
from app.db.session import get_db
from app.models.transaction import FuelTransaction
from app.schemas.dispense import TransactionOut
from app.services.recorder import TransactionRecorder

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require(Capability.VIEW_REPORTS)),
):
    with storage_errors():
        txn = await db.get(FuelTransaction, transaction_id)
    if txn is None:
        raise NotFound("Transaction", transaction_id)
    return build_transaction_response(txn)


@router.post("/{transaction_id}/complete", response_model=TransactionOut)
async def complete_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    recorder: TransactionRecorder = Depends(get_recorder),
    operator: Operator = Depends(require(Capability.ACKNOWLEDGE_DELIVERY)),
):
    """Acknowledge that the notification for a transaction was delivered"""
    txn = await recorder.mark_completed(db, transaction_id)
    return build_transaction_response(txn)
