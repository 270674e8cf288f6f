"""
Notification Abstract Base Classes

Defines the order event pushed to merchant dashboards and the observer
interface every delivery transport implements. The hub only talks to
Observer, so WebSockets, SSE or a message queue can be plugged in without
touching order logic.
"""

import enum
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass


class EventType(int, enum.Enum):
    """Wire values of the ``type`` field."""
    NEW_ORDER = 1
    REMINDER = 2


@dataclass(frozen=True)
class OrderEvent:
    """An order state-change event as sent to observers."""
    type: EventType
    order_id: int
    content: str

    @classmethod
    def new_order(cls, order_id: int, order_number: str) -> "OrderEvent":
        return cls(EventType.NEW_ORDER, order_id, f"Order number: {order_number}")

    @classmethod
    def reminder(cls, order_id: int, order_number: str) -> "OrderEvent":
        return cls(EventType.REMINDER, order_id, f"Order number: {order_number}")

    def to_dict(self) -> dict:
        return {
            "type": int(self.type),
            "orderId": self.order_id,
            "content": self.content,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class Observer(ABC):
    """A connected client eligible to receive broadcast events."""

    @property
    @abstractmethod
    def key(self) -> str:
        """Connection identity used as the registry key."""
        pass

    @abstractmethod
    async def send(self, message: str) -> None:
        """
        Deliver one serialized event.

        Raises:
            Exception: any transport failure; the hub drops the observer
        """
        pass

    async def close(self) -> None:
        """Release the underlying transport. Optional for implementations."""
        return None
