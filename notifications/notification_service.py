"""
Notification sinks for shipment alerts.

The engine hands every alert it records to a ``NotificationSink``. Sinks
report an unreachable destination as ``TransientFailure``; retrying with
backoff is the job of ``QueuedNotificationSink``, never of the engine.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import aiohttp

from core.errors import TransientFailure
from core.schemas import Alert, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AlertEvent:
    """Notification event for one alert on one shipment"""
    shipment_id: str
    tracking_number: str
    alert: Alert
    recipients: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def event_id(self) -> str:
        return f"alert_{self.shipment_id}_{self.alert.id}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "shipment_id": self.shipment_id,
            "tracking_number": self.tracking_number,
            "recipients": self.recipients,
            "alert": self.alert.model_dump(mode="json"),
            "timestamp": self.created_at.isoformat(),
        }


@runtime_checkable
class NotificationSink(Protocol):
    async def publish(self, event: AlertEvent) -> None: ...


class LoggingNotificationSink:
    """Writes alert events to the application log"""

    async def publish(self, event: AlertEvent) -> None:
        alert = event.alert
        logger.info(
            f"[{alert.severity.value}] {alert.type.value} on shipment {event.tracking_number}: "
            f"{alert.message} (to {', '.join(event.recipients) or 'nobody'})"
        )


class WebhookNotificationSink:
    """Posts alert events as JSON to a webhook"""

    def __init__(self, webhook_url: str, timeout_seconds: float = 30.0):
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds

    async def publish(self, event: AlertEvent) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=event.to_payload(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status >= 300:
                        raise TransientFailure(
                            f"Webhook {self.webhook_url} answered {response.status}",
                            shipment_id=event.shipment_id,
                        )
            logger.info(f"Webhook sent to {self.webhook_url} for {event.event_id}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFailure(
                f"Failed to send webhook to {self.webhook_url}: {e}",
                shipment_id=event.shipment_id,
            ) from e


def compute_backoff(attempt: int, backoff_seconds: float) -> float:
    """Seconds to wait before retry number ``attempt``.

    delay = backoff_seconds * 2^(attempt - 1)
    """
    return backoff_seconds * (2 ** (attempt - 1))


class QueuedNotificationSink:
    """Accepts events immediately and delivers them from a background worker.

    Failed deliveries are retried with exponential backoff until
    ``max_attempts`` is reached, then dropped with an error log.
    """

    def __init__(self, delegate: NotificationSink, max_attempts: int = 3, backoff_seconds: float = 2.0):
        self.delegate = delegate
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.queue: asyncio.Queue = asyncio.Queue()
        self.delivered = 0
        self.exhausted = 0
        self._worker: Optional[asyncio.Task] = None
        self._pending_retries: set = set()

    async def publish(self, event: AlertEvent) -> None:
        await self.queue.put((event, 1))
        logger.debug(f"Queued notification {event.event_id}")

    async def _deliver(self, event: AlertEvent, attempt: int) -> None:
        try:
            await self.delegate.publish(event)
            self.delivered += 1
        except TransientFailure as e:
            if attempt >= self.max_attempts:
                self.exhausted += 1
                logger.error(f"Notification {event.event_id} dropped after {attempt} attempts: {e}")
                return
            delay = compute_backoff(attempt, self.backoff_seconds)
            logger.warning(
                f"Notification {event.event_id} attempt {attempt} failed, retrying in {delay:.1f}s: {e}"
            )
            retry = asyncio.create_task(self._requeue_later(event, attempt + 1, delay))
            self._pending_retries.add(retry)
            retry.add_done_callback(self._pending_retries.discard)

    async def _requeue_later(self, event: AlertEvent, attempt: int, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.queue.put((event, attempt))

    async def process_next(self) -> None:
        """Deliver one queued event"""
        item: Tuple[AlertEvent, int] = await self.queue.get()
        try:
            await self._deliver(*item)
        finally:
            self.queue.task_done()

    async def run(self) -> None:
        logger.info("Starting notification processor...")
        while True:
            await self.process_next()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self.run())

    async def stop(self) -> None:
        for task in [self._worker, *self._pending_retries]:
            if task is not None:
                task.cancel()
        for task in [self._worker, *self._pending_retries]:
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._worker = None
        logger.info("Stopped notification processor")

    def get_stats(self) -> Dict[str, int]:
        return {
            "queued": self.queue.qsize(),
            "retrying": len(self._pending_retries),
            "delivered": self.delivered,
            "exhausted": self.exhausted,
        }


def build_notification_sink(config) -> NotificationSink:
    """Webhook sink when a URL is configured, otherwise log alerts"""
    if config.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotificationSink(
            config.NOTIFICATION_WEBHOOK_URL,
            timeout_seconds=config.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return LoggingNotificationSink()
