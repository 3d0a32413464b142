"""Boundary between the relay and the messaging client that owns the browser."""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Optional, Protocol

from ..state import ClientEvent

EventHandler = Callable[[ClientEvent], Awaitable[None]]


class GatewayError(RuntimeError):
    """A client operation failed; the message carries the automation layer's text."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MessagingClient(Protocol):
    """Operations and event stream the session supervisor relies on."""

    def set_event_handler(self, handler: Optional[EventHandler]) -> None: ...

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...

    async def is_registered_user(self, chat_id: str) -> bool: ...

    async def send_message(self, chat_id: str, text: str, *, send_seen: bool = False) -> None: ...

    async def get_state(self) -> Optional[str]: ...

    async def aclose(self) -> None: ...


__all__ = ["EventHandler", "GatewayError", "MessagingClient"]
