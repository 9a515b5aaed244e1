# notifications/publisher.py

"""
EVENT PUBLISHER CONTRACT

publish(topic, payload) is called only after the business transaction has
committed, from the outbox dispatcher. Implementations may raise; the
dispatcher records the failure and retries with backoff.

The active backend is settings.EVENT_PUBLISHER_BACKEND (dotted path).
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger("notifications")

TOPIC_ORDER_UPDATE = "order:update"
TOPIC_BILL_STATUS = "bill:status"
TOPIC_TABLE_UPDATE = "table:update"
TOPIC_KOT_UPDATE = "kot:update"

TOPICS = {
    TOPIC_ORDER_UPDATE,
    TOPIC_BILL_STATUS,
    TOPIC_TABLE_UPDATE,
    TOPIC_KOT_UPDATE,
}

DEFAULT_PUBLISHER = "notifications.publisher.LoggingEventPublisher"


class EventPublisher:
    def publish(self, topic: str, payload: dict) -> None:
        raise NotImplementedError


class LoggingEventPublisher(EventPublisher):
    """Default backend: writes each event to the notifications log."""

    def publish(self, topic: str, payload: dict) -> None:
        logger.info(
            "Event published",
            extra={
                "topic": topic,
                "outlet_id": payload.get("outlet_id"),
                "order_id": payload.get("order_id"),
            },
        )


def get_event_publisher() -> EventPublisher:
    path = getattr(settings, "EVENT_PUBLISHER_BACKEND", "") or DEFAULT_PUBLISHER
    return import_string(path)()
