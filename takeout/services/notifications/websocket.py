"""
WebSocket Observer

Adapts a FastAPI/Starlette WebSocket to the Observer interface.
"""

import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from takeout.services.notifications.base import Observer

logger = logging.getLogger(__name__)


class WebSocketObserver(Observer):
    def __init__(self, client_id: str, websocket: WebSocket):
        self._client_id = client_id
        self.websocket = websocket

    @property
    def key(self) -> str:
        return self._client_id

    async def send(self, message: str) -> None:
        await self.websocket.send_text(message)

    async def close(self) -> None:
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close()
