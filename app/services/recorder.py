"""Records a dispense: guard, ledger debit and transaction append as one unit.

The debit and the new transaction row share one database transaction, so
either both are committed or neither is. Idempotency keys are unique in the
log; a retried request gets the original result back without a second debit.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FuelType, QuotaAlert, TransactionStatus
from app.core.errors import (
    ConcurrencyConflict,
    FuelQuotaError,
    FuelTypeMismatch,
    IdempotencyConflict,
    NotFound,
    storage_errors,
)
from app.core.metrics import dispense_outcomes, dispensed_liters
from app.models.transaction import FuelTransaction
from app.services.analytics import AnalyticsEngine, TransactionFact
from app.services.guard import StationCompatibilityGuard
from app.services.ledger import QuotaLedger, rollback
from app.services.registry import get_station, get_vehicle
from app.utils.dates import utcnow
from app.utils.hashing import dispense_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispenseCommand:
    vehicle_id: int
    station_id: int
    fuel_type: FuelType
    amount: Decimal
    idempotency_key: str


@dataclass(frozen=True)
class TransactionResult:
    transaction_id: int
    remaining_quota: Decimal
    replayed: bool = False
    alert: Optional[QuotaAlert] = None


class TransactionRecorder:

    def __init__(self, ledger: QuotaLedger, guard: StationCompatibilityGuard, analytics: AnalyticsEngine, notifier=None):
        self.ledger = ledger
        self.guard = guard
        self.analytics = analytics
        self.notifier = notifier

    async def _existing(self, db: AsyncSession, key: str) -> Optional[FuelTransaction]:
        with storage_errors():
            res = await db.execute(select(FuelTransaction).where(FuelTransaction.idempotency_key == key))
        return res.scalars().first()

    @staticmethod
    def _replay(txn: FuelTransaction, fingerprint: str) -> TransactionResult:
        if txn.request_fingerprint != fingerprint:
            raise IdempotencyConflict(transaction_id=txn.id)
        logger.info(f"Replaying transaction {txn.id} for reused idempotency key")
        dispense_outcomes.labels(outcome="replayed").inc()
        return TransactionResult(transaction_id=txn.id, remaining_quota=txn.quota_after, replayed=True)

    async def record(self, db: AsyncSession, command: DispenseCommand) -> TransactionResult:
        try:
            result, txn, vehicle, station = await self._record(db, command)
        except FuelQuotaError as e:
            dispense_outcomes.labels(outcome=e.code).inc()
            raise
        if result.replayed:
            return result

        dispense_outcomes.labels(outcome="recorded").inc()
        dispensed_liters.labels(fuel_type=str(command.fuel_type)).inc(float(command.amount))
        await self.ledger.written(command.vehicle_id)
        self.analytics.apply(TransactionFact.from_transaction(txn, vehicle=vehicle, station=station))
        if self.notifier is not None:
            try:
                self.notifier.dispatch(txn, result.alert)
            except Exception as e:
                logger.error(f"Could not queue notification for transaction {txn.id}: {e}")
        return result

    async def _record(self, db: AsyncSession, command: DispenseCommand):
        vehicle = await get_vehicle(db, command.vehicle_id)
        station = await get_station(db, command.station_id)
        fingerprint = dispense_fingerprint(vehicle.id, station.id, command.fuel_type, command.amount)

        async with self.ledger.serialized(vehicle.id):
            existing = await self._existing(db, command.idempotency_key)
            if existing is not None:
                return self._replay(existing, fingerprint), existing, vehicle, station

            try:
                self.guard.check(station, vehicle, command.amount)
                if command.fuel_type != vehicle.fuel_type:
                    raise FuelTypeMismatch(requested=str(command.fuel_type), vehicle_fuel_type=str(vehicle.fuel_type))

                debit = await self.ledger.try_debit(db, vehicle.id, command.amount)
                txn = FuelTransaction(
                    vehicle_id=vehicle.id,
                    station_id=station.id,
                    fuel_type=vehicle.fuel_type,
                    amount=command.amount,
                    quota_before=debit.before,
                    quota_after=debit.remaining,
                    timestamp=utcnow(),
                    idempotency_key=command.idempotency_key,
                    request_fingerprint=fingerprint,
                    status=TransactionStatus.PENDING,
                )
                db.add(txn)
                with storage_errors():
                    await db.commit()
            except IntegrityError:
                # Another process committed the same key first.
                await rollback(db)
                winner = await self._existing(db, command.idempotency_key)
                if winner is None:
                    raise ConcurrencyConflict(vehicle_id=command.vehicle_id)
                return self._replay(winner, fingerprint), winner, vehicle, station
            except Exception:
                await rollback(db)
                raise

        logger.info(
            f"Recorded transaction {txn.id}: {command.amount}L {vehicle.fuel_type} for vehicle {vehicle.id} "
            f"at station {station.id}, {debit.remaining}L left"
        )
        result = TransactionResult(transaction_id=txn.id, remaining_quota=debit.remaining, alert=debit.alert)
        return result, txn, vehicle, station

    async def mark_completed(self, db: AsyncSession, transaction_id: int) -> FuelTransaction:
        """Acknowledge delivery of a transaction's notification; repeated calls are no-ops."""
        with storage_errors():
            txn = await db.get(FuelTransaction, transaction_id)
        if txn is None:
            raise NotFound("Transaction", transaction_id)
        if txn.status == TransactionStatus.COMPLETED:
            return txn

        txn.status = TransactionStatus.COMPLETED
        if txn.notified_at is None:
            txn.notified_at = utcnow()
        try:
            with storage_errors():
                await db.commit()
        except Exception:
            await rollback(db)
            raise
        logger.info(f"Transaction {txn.id} completed")
        return txn
