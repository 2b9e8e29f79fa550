"""Authoritative per-vehicle quota state.

Writes for one vehicle are serialized twice over: an in-process lock per
vehicle, and a version compare-and-swap on the allocation row so writers in
other processes cannot interleave either. Reads never take the lock.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import QuotaAlert
from app.core.errors import ConcurrencyConflict, InsufficientQuota, NotFound, QuotaExpired, storage_errors
from app.core.locks import KeyedLocks
from app.core.metrics import ledger_cas_retries, track_ledger_operation
from app.models.quota import QuotaAllocation
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

WriteListener = Callable[[int], Awaitable[None]]

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class QuotaSnapshot:
    vehicle_id: int
    allocated: Decimal
    used: Decimal
    period_start: datetime
    period_end: datetime
    expiring_soon: bool

    @property
    def remaining(self) -> Decimal:
        return self.allocated - self.used

    @property
    def usage_percentage(self) -> Decimal:
        if self.allocated == 0:
            return Decimal(0)
        return self.used / self.allocated * HUNDRED

    @classmethod
    def from_values(cls, vehicle_id, allocated, used, period_start, period_end, now, warning):
        period_end = as_utc(period_end)
        return cls(
            vehicle_id=vehicle_id,
            allocated=Decimal(allocated),
            used=Decimal(used),
            period_start=as_utc(period_start),
            period_end=period_end,
            expiring_soon=(period_end - now) <= warning,
        )

    @classmethod
    def from_allocation(cls, allocation: QuotaAllocation, now: datetime, warning: timedelta):
        return cls.from_values(
            allocation.vehicle_id,
            allocation.allocated_amount,
            allocation.used_amount,
            allocation.period_start,
            allocation.period_end,
            now,
            warning,
        )


@dataclass(frozen=True)
class DebitResult:
    vehicle_id: int
    allocation_id: int
    allocated: Decimal
    before: Decimal
    remaining: Decimal
    alert: Optional[QuotaAlert] = None


def quota_alert(allocated: Decimal, before: Decimal, after: Decimal,
                low_pct: Decimal, critical_pct: Decimal) -> Optional[QuotaAlert]:
    """Alert only when a debit crosses a threshold, not on every debit below it."""
    if allocated <= 0:
        return None
    before_pct = before / allocated * HUNDRED
    after_pct = after / allocated * HUNDRED
    if after_pct <= critical_pct < before_pct:
        return QuotaAlert.CRITICAL
    if after_pct <= low_pct < before_pct:
        return QuotaAlert.LOW
    return None


class QuotaLedger:

    def __init__(
        self,
        locks: Optional[KeyedLocks] = None,
        expiry_warning: Optional[timedelta] = None,
        cas_retries: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.locks = locks or KeyedLocks(timeout=settings.LEDGER_LOCK_TIMEOUT)
        self.expiry_warning = expiry_warning or timedelta(days=settings.QUOTA_EXPIRY_WARNING_DAYS)
        self.cas_retries = settings.LEDGER_CAS_RETRIES if cas_retries is None else cas_retries
        self.clock = clock
        self.low_pct = Decimal(str(settings.LOW_QUOTA_THRESHOLD_PCT))
        self.critical_pct = Decimal(str(settings.CRITICAL_QUOTA_THRESHOLD_PCT))
        self._listeners: List[WriteListener] = []

    def add_write_listener(self, listener: WriteListener) -> None:
        self._listeners.append(listener)

    async def written(self, vehicle_id: int) -> None:
        """Run write listeners after a commit; the write itself already succeeded."""
        for listener in self._listeners:
            try:
                await listener(vehicle_id)
            except Exception as e:
                logger.warning(f"Write listener failed for vehicle {vehicle_id}: {e}")

    def serialized(self, vehicle_id: int):
        return self.locks.hold(vehicle_id)

    async def _active(self, db: AsyncSession, vehicle_id: int) -> QuotaAllocation:
        stmt = (
            select(QuotaAllocation)
            .where(QuotaAllocation.vehicle_id == vehicle_id, QuotaAllocation.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
        with storage_errors():
            res = await db.execute(stmt)
        allocation = res.scalars().first()
        if allocation is None:
            raise NotFound("Quota allocation for vehicle", vehicle_id)
        return allocation

    @track_ledger_operation("get_quota")
    async def get_quota(self, db: AsyncSession, vehicle_id: int) -> QuotaSnapshot:
        allocation = await self._active(db, vehicle_id)
        return QuotaSnapshot.from_allocation(allocation, self.clock(), self.expiry_warning)

    @track_ledger_operation("try_debit")
    async def try_debit(self, db: AsyncSession, vehicle_id: int, amount: Decimal) -> DebitResult:
        """Debit inside the caller's DB transaction; the caller holds serialized() and commits."""
        for attempt in range(self.cas_retries + 1):
            allocation = await self._active(db, vehicle_id)
            if as_utc(allocation.period_end) < self.clock():
                raise QuotaExpired(vehicle_id=vehicle_id, period_end=as_utc(allocation.period_end).isoformat())

            before = allocation.remaining
            if amount > before:
                raise InsufficientQuota(remaining=before, requested=amount)

            stmt = (
                update(QuotaAllocation)
                .where(
                    QuotaAllocation.id == allocation.id,
                    QuotaAllocation.version == allocation.version,
                    QuotaAllocation.is_active.is_(True),
                )
                .values(used_amount=allocation.used_amount + amount, version=allocation.version + 1)
                .execution_options(synchronize_session=False)
            )
            with storage_errors():
                res = await db.execute(stmt)
            if res.rowcount == 1:
                remaining = before - amount
                return DebitResult(
                    vehicle_id=vehicle_id,
                    allocation_id=allocation.id,
                    allocated=allocation.allocated_amount,
                    before=before,
                    remaining=remaining,
                    alert=quota_alert(allocation.allocated_amount, before, remaining, self.low_pct, self.critical_pct),
                )

            ledger_cas_retries.inc()
            logger.info(f"Version conflict debiting vehicle {vehicle_id} (attempt {attempt + 1})")

        raise ConcurrencyConflict(vehicle_id=vehicle_id)

    async def debit(self, db: AsyncSession, vehicle_id: int, amount: Decimal) -> DebitResult:
        async with self.serialized(vehicle_id):
            try:
                result = await self.try_debit(db, vehicle_id, amount)
                with storage_errors():
                    await db.commit()
            except Exception:
                await rollback(db)
                raise
        await self.written(vehicle_id)
        return result

    @track_ledger_operation("rollover")
    async def rollover(
        self,
        db: AsyncSession,
        vehicle_id: int,
        allocated: Decimal,
        period_start: datetime,
        period_end: datetime,
    ) -> QuotaSnapshot:
        """Replace the vehicle's active allocation with a fresh one for a new period."""
        if allocated <= 0:
            raise ValueError("Allocation must be positive")
        if as_utc(period_end) <= as_utc(period_start):
            raise ValueError("Period end must be after period start")

        async with self.serialized(vehicle_id):
            try:
                with storage_errors():
                    res = await db.execute(
                        select(QuotaAllocation)
                        .where(QuotaAllocation.vehicle_id == vehicle_id, QuotaAllocation.is_active.is_(True))
                        .execution_options(populate_existing=True)
                    )
                    current = res.scalars().first()
                    if current is not None:
                        res = await db.execute(
                            update(QuotaAllocation)
                            .where(QuotaAllocation.id == current.id, QuotaAllocation.version == current.version)
                            .values(is_active=False, version=current.version + 1)
                            .execution_options(synchronize_session=False)
                        )
                        if res.rowcount != 1:
                            raise ConcurrencyConflict(vehicle_id=vehicle_id)

                    allocation = QuotaAllocation(
                        vehicle_id=vehicle_id,
                        period_start=as_utc(period_start),
                        period_end=as_utc(period_end),
                        allocated_amount=Decimal(allocated),
                        used_amount=Decimal(0),
                        is_active=True,
                        version=1,
                    )
                    db.add(allocation)
                    await db.commit()
            except Exception:
                await rollback(db)
                raise

        logger.info(f"Rolled over quota for vehicle {vehicle_id}: {allocated}L until {as_utc(period_end).date()}")
        await self.written(vehicle_id)
        return QuotaSnapshot.from_allocation(allocation, self.clock(), self.expiry_warning)

    async def allocations_starting_between(self, db: AsyncSession, start: datetime, end: datetime) -> List[QuotaAllocation]:
        """Newest allocation per vehicle among those starting in the window; replaced rows are skipped."""
        latest = (
            select(func.max(QuotaAllocation.id))
            .where(
                QuotaAllocation.period_start >= as_utc(start),
                QuotaAllocation.period_start <= as_utc(end),
            )
            .group_by(QuotaAllocation.vehicle_id)
        )
        stmt = (
            select(QuotaAllocation)
            .where(QuotaAllocation.id.in_(latest))
            .order_by(QuotaAllocation.vehicle_id)
            .execution_options(populate_existing=True)
        )
        with storage_errors():
            res = await db.execute(stmt)
        return list(res.scalars().all())


async def rollback(db: AsyncSession) -> None:
    with storage_errors():
        await db.rollback()
