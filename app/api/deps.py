from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from app.core.config import settings
from app.services.analytics import AnalyticsEngine
from app.services.guard import StationCompatibilityGuard
from app.services.ledger import QuotaLedger
from app.services.notifications import NotificationDispatcher
from app.services.quota_cache import QuotaCache
from app.services.recorder import TransactionRecorder


@dataclass
class ServiceContainer:
    ledger: QuotaLedger
    guard: StationCompatibilityGuard
    analytics: AnalyticsEngine
    recorder: TransactionRecorder
    cache: QuotaCache


def build_container(ledger: Optional[QuotaLedger] = None, analytics: Optional[AnalyticsEngine] = None,
                    notifier=None, redis=None) -> ServiceContainer:
    ledger = ledger or QuotaLedger()
    analytics = analytics or AnalyticsEngine()
    guard = StationCompatibilityGuard()
    cache = QuotaCache(redis, settings.QUOTA_CACHE_TTL, ledger.expiry_warning)
    ledger.add_write_listener(cache.invalidate)
    recorder = TransactionRecorder(ledger, guard, analytics, notifier)
    return ServiceContainer(ledger=ledger, guard=guard, analytics=analytics, recorder=recorder, cache=cache)


@lru_cache
def get_container() -> ServiceContainer:
    return build_container(notifier=NotificationDispatcher())


def get_ledger(container: ServiceContainer = Depends(get_container)) -> QuotaLedger:
    return container.ledger


def get_analytics(container: ServiceContainer = Depends(get_container)) -> AnalyticsEngine:
    return container.analytics


def get_recorder(container: ServiceContainer = Depends(get_container)) -> TransactionRecorder:
    return container.recorder


def get_quota_cache(container: ServiceContainer = Depends(get_container)) -> QuotaCache:
    return container.cache


def idempotency_header(idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")) -> Optional[str]:
    return idempotency_key
