"""Notification delivery.

Real transports (email, push, webhooks) are not part of this service; the
default transport only records that a send happened.
"""
import time
from typing import Optional

from notifyqueue import settings
from notifyqueue.logging_conf import logger
from notifyqueue.queue.models import QueueItem


class NoopTransport:
    """Pretends to send a notification, taking `delay_ms` to do so."""

    def __init__(self, delay_ms: Optional[int] = None):
        self.delay_ms = settings.TRANSPORT_DELAY_MS if delay_ms is None else delay_ms

    def send(self, item: QueueItem) -> None:
        logger.info("Sending notification", extra=item.log_context())
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000)
