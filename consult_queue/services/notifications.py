import json
import logging
from typing import Optional

from ..core.clock import utcnow
from ..core.config import settings
from ..schemas.queue import QueueEvent

logger = logging.getLogger(__name__)


class QueueNotifier:
    """Receives queue events. Delivery is best effort."""

    def notify(self, appointment_id: str, event: QueueEvent) -> None:
        logger.debug(f"Queue event {event.value} for appointment {appointment_id}")


class RedisQueueNotifier(QueueNotifier):
    """Publishes queue events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis_client, channel: Optional[str] = None):
        self.redis_client = redis_client
        self.channel = channel or settings.QUEUE_EVENTS_CHANNEL

    def notify(self, appointment_id: str, event: QueueEvent) -> None:
        message = json.dumps({
            "appointment_id": appointment_id,
            "event": QueueEvent(event).value,
            "timestamp": utcnow().isoformat(),
        })
        receivers = self.redis_client.publish(self.channel, message)
        logger.info(
            f"Published '{QueueEvent(event).value}' for appointment {appointment_id} "
            f"to {receivers} subscriber(s)"
        )
