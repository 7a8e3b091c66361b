"""Outbound dispatch events (batch assigned, batch delivered).

Events are fire-and-forget: a failed delivery is logged and never propagates
back into the batch state change that produced it.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

import httpx

from ..config import settings
from ..models.domain import Batch, Driver

logger = logging.getLogger(__name__)

BATCH_ASSIGNED = "batch.assigned"
BATCH_DELIVERED = "batch.delivered"


def _batch_payload(batch: Batch) -> dict[str, Any]:
    return {
        "batch_id": batch.batch_id,
        "locality": batch.locality,
        "order_ids": list(batch.order_ids),
        "driver_id": batch.driver_id,
        "delivery_date": batch.delivery_date.isoformat() if batch.delivery_date else None,
    }


class Notifier:
    """Base notifier: records events in the log only."""

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(f"Event {event}: {payload}")

    def batch_assigned(self, batch: Batch, driver: Driver) -> None:
        payload = _batch_payload(batch)
        payload["driver_id"] = driver.driver_id
        payload["driver_name"] = driver.name
        self.publish(BATCH_ASSIGNED, payload)

    def batch_delivered(self, batch: Batch) -> None:
        self.publish(BATCH_DELIVERED, _batch_payload(batch))


class WebhookNotifier(Notifier):
    """POST events as JSON to a webhook on a background thread."""

    def __init__(
        self,
        url: str,
        *,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        timeout: float | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        if not url:
            raise ValueError("Notification webhook URL is not configured.")
        self.url = url
        self.max_retries = max_retries if max_retries is not None else settings.notification_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.notification_backoff_seconds
        self.timeout = timeout if timeout is not None else settings.notification_timeout_seconds
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")

    def publish(self, event: str, payload: dict[str, Any]) -> Future:
        return self._executor.submit(self._deliver, event, payload)

    def send(self, event: str, payload: dict[str, Any]) -> bool:
        """Deliver synchronously with retries. Returns True when accepted."""
        body = {
            "event": event,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        attempt = 0
        with httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0)) as client:
            while True:
                try:
                    response = client.post(self.url, json=body)
                    response.raise_for_status()
                    return True
                except httpx.HTTPStatusError as e:
                    # 4xx will not improve with retries
                    if e.response.status_code < 500:
                        raise
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Webhook {event} failed, retrying in {wait_time:.1f}s (attempt {attempt}): {e}")
                    time.sleep(wait_time)

    def _deliver(self, event: str, payload: dict[str, Any]) -> bool:
        try:
            return self.send(event, payload)
        except httpx.HTTPError as exc:
            logger.warning(f"Dropping {event} notification for batch {payload.get('batch_id')}: {exc}")
            return False

    def close(self) -> None:
        self._executor.shutdown(wait=False)


def build_notifier() -> Notifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url)
    logging.info("Notification webhook not configured - events will only be logged")
    return Notifier()
