import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from app.core.enums import FuelType, QuotaAlert
from app.models.transaction import FuelTransaction
from app.services import notifications
from app.services.ledger import QuotaSnapshot
from app.services.notifications import NotificationDispatcher, build_payload, send_webhook
from app.services.quota_cache import QuotaCache
from app.services.tasks import deliver_transaction_notification
from app.services.tasks_internal import rollover_all_async
from app.utils.dates import utcnow

pytestmark = pytest.mark.webhooks


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(notifications, "INITIAL_BACKOFF", 0.0)


def sample_transaction():
    return FuelTransaction(
        id=42,
        vehicle_id=1,
        station_id=2,
        fuel_type=FuelType.PETROL,
        amount=Decimal("12.500"),
        quota_before=Decimal("20"),
        quota_after=Decimal("7.500"),
        timestamp=utcnow(),
    )


def test_payload_carries_alert_only_when_present():
    txn = sample_transaction()
    plain = build_payload(txn)
    assert plain["transaction_id"] == 42
    assert plain["remaining_quota"] == 7.5
    assert plain["fuel_type"] == "Petrol"
    assert "alert" not in plain

    assert build_payload(txn, QuotaAlert.LOW)["alert"] == "low"


async def test_webhook_delivered_first_try():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    ok = await send_webhook({"transaction_id": 1}, retries=3, url="http://notify.test/hook",
                            transport=httpx.MockTransport(handler))
    assert ok is True
    assert seen == [{"transaction_id": 1}]


async def test_webhook_retries_until_success():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectTimeout("slow", request=request)
        if calls["n"] == 2:
            return httpx.Response(503)
        return httpx.Response(200)

    ok = await send_webhook({"transaction_id": 1}, retries=3, url="http://notify.test/hook",
                            transport=httpx.MockTransport(handler))
    assert ok is True
    assert calls["n"] == 3


async def test_webhook_gives_up_after_retries():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(500)

    ok = await send_webhook({"transaction_id": 1}, retries=2, url="http://notify.test/hook",
                            transport=httpx.MockTransport(handler))
    assert ok is False
    assert calls["n"] == 2


def test_dispatcher_queues_delivery_task(monkeypatch):
    queued = []
    monkeypatch.setattr(deliver_transaction_notification, "delay", lambda *args: queued.append(args))

    NotificationDispatcher().dispatch(sample_transaction(), QuotaAlert.CRITICAL)

    assert len(queued) == 1
    transaction_id, payload = queued[0]
    assert transaction_id == 42
    assert payload["alert"] == "critical"


class DictRedis:
    """Minimal async stand-in for the Redis calls the quota cache makes."""

    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.data.get(key)

    async def mget(self, *keys):
        if self.fail:
            raise ConnectionError("redis down")
        return [self.data.get(key) for key in keys]

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.data[key] = value

    async def incr(self, key):
        value = int(self.data.get(key) or 0) + 1
        self.data[key] = str(value)
        return value

    async def delete(self, key):
        self.data.pop(key, None)


def snapshot(now):
    return QuotaSnapshot.from_values(
        7, Decimal("60"), Decimal("12.5"), now - timedelta(days=1), now + timedelta(days=2), now, timedelta(days=3)
    )


async def test_quota_cache_round_trip_and_invalidate():
    now = utcnow()
    cache = QuotaCache(DictRedis(), ttl=60, expiry_warning=timedelta(days=3))

    assert await cache.get(7, now) is None
    await cache.put(snapshot(now))

    cached = await cache.get(7, now)
    assert cached.remaining == Decimal("47.5")
    assert cached.expiring_soon is True

    await cache.invalidate(7)
    assert await cache.get(7, now) is None


async def test_quota_cache_fails_soft():
    now = utcnow()
    cache = QuotaCache(DictRedis(fail=True), ttl=60, expiry_warning=timedelta(days=3))
    await cache.put(snapshot(now))
    assert await cache.get(7, now) is None

    uncached = QuotaCache(None, ttl=60, expiry_warning=timedelta(days=3))
    await uncached.put(snapshot(now))
    assert await uncached.get(7, now) is None


async def test_snapshot_loaded_before_a_write_is_not_served():
    now = utcnow()
    cache = QuotaCache(DictRedis(), ttl=60, expiry_warning=timedelta(days=3))

    # reader misses, notes the generation and loads the old figures
    generation = await cache.generation(7)
    stale = snapshot(now)
    # a dispense commits and invalidates before the reader stores its load
    await cache.invalidate(7)
    await cache.put(stale, generation)

    assert await cache.get(7, now) is None

    fresh_generation = await cache.generation(7)
    await cache.put(snapshot(now), fresh_generation)
    assert await cache.get(7, now) is not None


@pytest.mark.integration
async def test_monthly_rollover_task_drops_cached_quota(session_factory, seed):
    now = utcnow()
    redis = DictRedis()
    cache = QuotaCache(redis, ttl=60, expiry_warning=timedelta(days=3))
    cached = QuotaSnapshot.from_values(
        seed.petrol_car, Decimal("60"), Decimal("55"), now - timedelta(days=1), now + timedelta(days=2),
        now, timedelta(days=3),
    )
    await cache.put(cached, await cache.generation(seed.petrol_car))
    assert await cache.get(seed.petrol_car, now) is not None

    result = await rollover_all_async(session_factory=session_factory, redis=redis)

    assert result == {"affected_vehicles": 2, "failed_vehicles": 0}
    assert await cache.get(seed.petrol_car, now) is None
