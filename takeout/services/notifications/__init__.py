"""
Notification Fan-out

Returns the process-wide NotificationHub that WebSocket connections
register with and that the order lifecycle broadcasts to.
"""

import logging
from functools import lru_cache

from takeout.services.notifications.base import EventType, Observer, OrderEvent
from takeout.services.notifications.hub import NotificationHub

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_hub() -> NotificationHub:
    """Get the shared notification hub."""
    logger.info("Notification Hub: created")
    return NotificationHub()


def reset_notification_hub() -> None:
    """Clear the cached hub instance."""
    get_notification_hub.cache_clear()


__all__ = [
    "get_notification_hub",
    "reset_notification_hub",
    "NotificationHub",
    "Observer",
    "OrderEvent",
    "EventType",
]
