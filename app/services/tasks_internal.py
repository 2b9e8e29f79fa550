import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from redis.asyncio import Redis
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.models.transaction import FuelTransaction
from app.services.allocation import allocate_period, month_period
from app.services.ledger import QuotaLedger
from app.services.notifications import build_payload, send_webhook
from app.services.quota_cache import QuotaCache
from app.services.registry import list_vehicles
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)

engine_worker = create_async_engine(settings.DATABASE_URL, future=True, echo=False)
AsyncSessionWorker = async_sessionmaker(engine_worker, class_=AsyncSession, expire_on_commit=False)

PENDING_GRACE = timedelta(minutes=5)
PENDING_BATCH = 200


async def deliver_notification_async(transaction_id: int, payload: dict) -> bool:
    """Background task to push one transaction to the notification service"""
    delivered = await send_webhook(payload)
    if not delivered:
        return False

    async with AsyncSessionWorker() as db:
        await db.execute(
            update(FuelTransaction)
            .where(FuelTransaction.id == transaction_id, FuelTransaction.notified_at.is_(None))
            .values(notified_at=utcnow())
        )
        await db.commit()
    return True


async def pending_notifications_async() -> List[Tuple[int, dict]]:
    """Transactions whose notification never went out, oldest first."""
    cutoff = utcnow() - PENDING_GRACE
    async with AsyncSessionWorker() as db:
        res = await db.execute(
            select(FuelTransaction)
            .where(FuelTransaction.notified_at.is_(None), FuelTransaction.timestamp < cutoff)
            .order_by(FuelTransaction.id)
            .limit(PENDING_BATCH)
        )
        pending = [(txn.id, build_payload(txn)) for txn in res.scalars().all()]
    if pending:
        logger.info(f"Re-queueing {len(pending)} undelivered notification(s)")
    return pending


def worker_ledger(redis: Optional[Redis]) -> QuotaLedger:
    """Ledger whose writes drop the quota views the API has cached."""
    ledger = QuotaLedger()
    cache = QuotaCache(redis, settings.QUOTA_CACHE_TTL, ledger.expiry_warning)
    ledger.add_write_listener(cache.invalidate)
    return ledger


async def rollover_all_async(
    month: Optional[str] = None,
    session_factory: async_sessionmaker = AsyncSessionWorker,
    redis: Optional[Redis] = None,
) -> dict:
    """Start a new calendar-month allocation for every registered vehicle"""
    period_start, period_end = month_period(month)
    own_redis = redis is None
    if own_redis:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=1.0)
    try:
        ledger = worker_ledger(redis)
        async with session_factory() as db:
            vehicles = await list_vehicles(db)
            affected, failed = await allocate_period(db, ledger, vehicles, period_start, period_end)
    finally:
        if own_redis:
            await redis.aclose()
    return {"affected_vehicles": affected, "failed_vehicles": failed}
