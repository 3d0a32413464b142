"""Messaging client backed by the browser-automation gateway."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import Settings
from ..state import ClientEvent
from .base import EventHandler
from .http_client import GatewayHttpClient
from .ws_client import GatewayEventStream

logger = logging.getLogger(__name__)


class GatewayClient:
    """REST operations plus the lifecycle event stream, as one client handle."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._http = GatewayHttpClient(settings, transport=transport)
        self._events = GatewayEventStream(settings)
        self._handler: Optional[EventHandler] = None

    def set_event_handler(self, handler: Optional[EventHandler]) -> None:
        self._handler = handler

    async def initialize(self) -> None:
        # Subscribe first so the QR emitted during initialize is not missed.
        if not self._events.connected:
            await self._events.connect(self._on_event)
        await self._http.initialize_session()

    async def destroy(self) -> None:
        await self._events.disconnect()
        await self._http.destroy_session()

    async def is_registered_user(self, chat_id: str) -> bool:
        return await self._http.is_registered_user(chat_id)

    async def send_message(self, chat_id: str, text: str, *, send_seen: bool = False) -> None:
        await self._http.send_message(chat_id, text, send_seen=send_seen)

    async def get_state(self) -> Optional[str]:
        return await self._http.get_state()

    async def aclose(self) -> None:
        await self._events.disconnect()
        await self._http.aclose()

    async def _on_event(self, event: ClientEvent) -> None:
        if self._handler is None:
            logger.debug("Dropping gateway event %s: no handler registered", event.type)
            return
        await self._handler(event)


__all__ = ["GatewayClient"]
