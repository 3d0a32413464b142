"""Gateway WebSocket listener delivering client lifecycle events."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import websockets
from websockets.exceptions import InvalidHandshake, InvalidURI

from ..config import Settings
from ..state import ClientEvent
from .base import EventHandler, GatewayError

logger = logging.getLogger(__name__)

KNOWN_EVENTS = frozenset({"qr", "authenticated", "ready", "auth_failure", "disconnected", "error"})


class GatewayEventStream:
    """Maintains the gateway event websocket for the relay's single session."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._conn: Optional[Any] = None
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._handler: Optional[EventHandler] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self, handler: EventHandler) -> None:
        try:
            await self.disconnect()
            uri = self.settings.gateway_ws_url
            logger.info("Connecting to gateway event stream %s", uri)
            self._stop_event.clear()
            self._handler = handler
            self._conn = await websockets.connect(uri, ping_interval=None, ping_timeout=None)
            self._listener_task = asyncio.create_task(self._listen(), name="gateway-event-listener")
        except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as e:
            logger.error("Failed to connect to gateway event stream: %s", e)
            raise GatewayError(f"gateway unreachable: {e}") from e

    async def disconnect(self) -> None:
        """Intentional close; does not emit a ``disconnected`` event."""
        try:
            self._stop_event.set()
            if self._listener_task:
                self._listener_task.cancel()
                try:
                    await self._listener_task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning("Error during listener task cleanup: %s", e)
            self._listener_task = None
            if self._conn:
                try:
                    await self._conn.close()
                except Exception as e:
                    logger.warning("Error closing websocket connection: %s", e)
                self._conn = None
            self._handler = None
        except Exception as e:
            logger.warning("Error during disconnect: %s", e)

    async def send(self, message: dict[str, Any]) -> None:
        if not self._conn:
            logger.warning("Cannot send message - gateway event stream not connected")
            return
        try:
            await self._conn.send(json.dumps(message))
        except websockets.ConnectionClosed:
            logger.warning("Cannot send message - websocket connection closed")
        except Exception as e:
            logger.error("Failed to send websocket message: %s", e)

    async def _listen(self) -> None:
        assert self._conn is not None
        close_reason: Optional[str] = None
        try:
            async for message in self._conn:
                try:
                    payload = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from gateway: %s", message)
                    continue

                event_type = payload.get("type") if isinstance(payload, dict) else None
                if event_type == "ping":
                    await self.send({"type": "pong"})
                    continue
                if event_type not in KNOWN_EVENTS:
                    logger.debug("Ignoring gateway frame type=%s", event_type)
                    continue

                data = payload.get("data")
                await self._dispatch(ClientEvent(type=event_type, data=data if isinstance(data, dict) else {}))
            close_reason = "event_stream_closed"
        except asyncio.CancelledError:  # cooperative cancel
            raise
        except websockets.ConnectionClosedOK:
            logger.info("Gateway event stream closed cleanly")
            close_reason = "event_stream_closed"
        except websockets.ConnectionClosedError as exc:
            logger.warning("Gateway event stream closed: %s", exc)
            close_reason = "event_stream_closed"
        except Exception:  # pragma: no cover - defensive guard
            logger.exception("Gateway event listener crashed")
            close_reason = "event_stream_crashed"
        finally:
            conn = self._conn
            self._conn = None
            self._listener_task = None
            if conn:
                await conn.close()

        # Closed from the gateway side: treat like a client disconnect.
        if close_reason and not self._stop_event.is_set():
            self._stop_event.set()
            await self._dispatch(ClientEvent(type="disconnected", data={"reason": close_reason}))

    async def _dispatch(self, event: ClientEvent) -> None:
        if not self._handler:
            return
        try:
            await self._handler(event)
        except Exception as e:
            logger.exception("Error in gateway event handler: %s", e)
