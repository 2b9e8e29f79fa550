import asyncio
import logging
import time
from typing import Optional

import httpx

from app.core.config import settings
from app.core.enums import QuotaAlert
from app.core.metrics import notification_deliveries, notification_duration
from app.models.transaction import FuelTransaction
from app.utils.dates import as_utc

logger = logging.getLogger(__name__)

INITIAL_BACKOFF = 1.0  # seconds, doubled after each failed attempt


def build_payload(txn: FuelTransaction, alert: Optional[QuotaAlert] = None) -> dict:
    payload = {
        "transaction_id": txn.id,
        "vehicle_id": txn.vehicle_id,
        "station_id": txn.station_id,
        "fuel_type": str(txn.fuel_type),
        "amount": float(txn.amount),
        "remaining_quota": float(txn.quota_after),
        "timestamp": as_utc(txn.timestamp).isoformat(),
    }
    if alert is not None:
        payload["alert"] = str(alert)
    return payload


async def send_webhook(
    payload: dict,
    retries: int | None = None,
    url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:

    if retries is None:
        retries = settings.WEBHOOK_RETRIES
    url = url or settings.NOTIFICATION_WEBHOOK_URL
    txn_id = payload.get("transaction_id")

    backoff = INITIAL_BACKOFF
    started = time.time()

    for attempt in range(1, retries + 1):
        try:
            async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT, transport=transport) as client:
                response = await client.post(url, json=payload)

                if 200 <= response.status_code < 300:
                    logger.info(f"Notification delivered for transaction {txn_id}")
                    notification_deliveries.labels(status="delivered").inc()
                    notification_duration.labels(status="delivered").observe(time.time() - started)
                    return True
                else:
                    logger.warning(
                        f"Notification delivery failed (attempt {attempt}/{retries}): "
                        f"Status {response.status_code} for transaction {txn_id}"
                    )
        except httpx.TimeoutException:
            logger.warning(f"Notification timeout (attempt {attempt}/{retries}) for transaction {txn_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Notification delivery error (attempt {attempt}/{retries}): {e} for transaction {txn_id}")

        if attempt < retries:
            await asyncio.sleep(backoff)
            backoff *= 2.0

    logger.error(f"Notification delivery failed after {retries} attempts for transaction {txn_id}")
    notification_deliveries.labels(status="failed").inc()
    notification_duration.labels(status="failed").observe(time.time() - started)
    return False


class NotificationDispatcher:
    """Hands committed transactions to the Celery worker for delivery."""

    def dispatch(self, txn: FuelTransaction, alert: Optional[QuotaAlert] = None) -> None:
        from app.services.tasks import deliver_transaction_notification

        deliver_transaction_notification.delay(txn.id, build_payload(txn, alert))
        notification_deliveries.labels(status="queued").inc()
        if alert is not None:
            logger.info(f"Vehicle {txn.vehicle_id} quota is {alert} after transaction {txn.id}")
