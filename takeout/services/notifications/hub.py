"""
Notification Hub

Registry of connected observers with best-effort broadcast.

Guarantees:
    - Only observers registered when broadcast() starts receive the event
    - A failing observer never blocks or fails delivery to the others
    - A failing observer is removed from the registry
    - broadcast() never raises to the business operation that triggered it
"""

import asyncio
import logging
from typing import Optional

from takeout.services.notifications.base import Observer, OrderEvent

logger = logging.getLogger(__name__)


class NotificationHub:
    """Observer registry keyed by connection identity."""

    def __init__(self, send_timeout: Optional[float] = 5.0):
        self._observers: dict[str, Observer] = {}
        self.send_timeout = send_timeout

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, key: str) -> bool:
        return key in self._observers

    def register(self, observer: Observer) -> None:
        previous = self._observers.get(observer.key)
        if previous is not None and previous is not observer:
            logger.info(f"Observer {observer.key} reconnected, replacing old channel")
        self._observers[observer.key] = observer
        logger.info(f"Observer {observer.key} registered ({len(self)} connected)")

    def unregister(self, key: str, observer: Optional[Observer] = None) -> None:
        """
        Remove an observer. Safe to call repeatedly and from close paths.

        When ``observer`` is given, the entry is only removed if it is still
        that observer, so a stale close does not evict a newer connection.
        """
        current = self._observers.get(key)
        if current is None:
            return
        if observer is not None and current is not observer:
            return
        del self._observers[key]
        logger.info(f"Observer {key} unregistered ({len(self)} connected)")

    async def _deliver(self, observer: Observer, message: str) -> None:
        if self.send_timeout is None:
            await observer.send(message)
        else:
            await asyncio.wait_for(observer.send(message), timeout=self.send_timeout)

    async def broadcast(self, event: OrderEvent) -> int:
        """
        Send an event to every currently registered observer.

        Returns:
            Number of observers the event was delivered to
        """
        try:
            message = event.to_json()
        except (TypeError, ValueError):
            logger.exception(f"Could not serialize event for order #{event.order_id}")
            return 0

        targets = list(self._observers.values())
        if not targets:
            logger.debug(f"No observers connected for order #{event.order_id} event")
            return 0

        results = await asyncio.gather(
            *(self._deliver(observer, message) for observer in targets),
            return_exceptions=True,
        )

        delivered = 0
        for observer, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Delivery to observer {observer.key} failed, dropping it: {result!r}"
                )
                self.unregister(observer.key, observer)
            else:
                delivered += 1

        logger.info(
            f"Event type={int(event.type)} for order #{event.order_id} "
            f"delivered to {delivered}/{len(targets)} observers"
        )
        return delivered

    async def close_all(self) -> None:
        """Close every registered observer and empty the registry."""
        observers = list(self._observers.values())
        self._observers.clear()

        results = await asyncio.gather(
            *(observer.close() for observer in observers),
            return_exceptions=True,
        )
        for observer, result in zip(observers, results):
            if isinstance(result, BaseException):
                logger.warning(f"Closing observer {observer.key} failed: {result!r}")

        if observers:
            logger.info(f"Closed {len(observers)} observers")
