"""Read-through cache for quota views, owned by the HTTP layer.

Entries expire after QUOTA_CACHE_TTL and are dropped on every committed
ledger write for the vehicle. Every write also bumps a per-vehicle
generation counter; an entry is served only while the generation it was
loaded under is still current. A reader that loaded its snapshot before a
write and stores it afterwards is therefore never served.
Without Redis every read goes to the ledger.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Optional

from redis.asyncio import Redis

from app.core.metrics import cache_hits, cache_misses
from app.services.ledger import QuotaSnapshot

logger = logging.getLogger(__name__)


class QuotaCache:

    def __init__(self, redis: Optional[Redis], ttl: int, expiry_warning: timedelta):
        self.redis = redis
        self.ttl = ttl
        self.expiry_warning = expiry_warning

    @staticmethod
    def key(vehicle_id: int) -> str:
        return f"quota:{vehicle_id}"

    @staticmethod
    def generation_key(vehicle_id: int) -> str:
        return f"quota:{vehicle_id}:generation"

    async def generation(self, vehicle_id: int) -> Optional[str]:
        """Write generation to stamp a snapshot with; read it before loading from the ledger."""
        if self.redis is None:
            return None
        try:
            return await self.redis.get(self.generation_key(vehicle_id))
        except Exception as e:
            logger.warning(f"Cache generation lookup failed: {e}")
            return None

    async def get(self, vehicle_id: int, now: datetime) -> Optional[QuotaSnapshot]:
        if self.redis is None:
            return None
        try:
            cached, generation = await self.redis.mget(self.key(vehicle_id), self.generation_key(vehicle_id))
        except Exception as e:
            logger.warning(f"Cache retrieval failed: {e}")
            return None
        if not cached:
            cache_misses.labels(cache="quota").inc()
            return None
        obj = json.loads(cached)
        if obj.get("generation") != generation:
            # loaded before the latest write
            cache_misses.labels(cache="quota").inc()
            return None
        cache_hits.labels(cache="quota").inc()
        # expiring_soon depends on the clock, so it is derived again on every hit
        return QuotaSnapshot.from_values(
            obj["vehicle_id"],
            obj["allocated"],
            obj["used"],
            datetime.fromisoformat(obj["period_start"]),
            datetime.fromisoformat(obj["period_end"]),
            now,
            self.expiry_warning,
        )

    async def put(self, snapshot: QuotaSnapshot, generation: Optional[str] = None) -> None:
        if self.redis is None:
            return
        data = {
            "vehicle_id": snapshot.vehicle_id,
            "allocated": str(snapshot.allocated),
            "used": str(snapshot.used),
            "period_start": snapshot.period_start.isoformat(),
            "period_end": snapshot.period_end.isoformat(),
            "generation": generation,
        }
        try:
            await self.redis.set(self.key(snapshot.vehicle_id), json.dumps(data), ex=self.ttl)
        except Exception as e:
            logger.warning(f"Cache write failed: {e}")

    async def invalidate(self, vehicle_id: int) -> None:
        if self.redis is None:
            return
        await self.redis.incr(self.generation_key(vehicle_id))
        await self.redis.delete(self.key(vehicle_id))
