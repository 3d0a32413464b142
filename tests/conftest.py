from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1] / "relay"
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import QrSettings, ReinitSettings, Settings  # noqa: E402
from app.state import ClientEvent  # noqa: E402
from app.supervisor import SessionSupervisor  # noqa: E402


class FakeMessagingClient:
    """In-memory stand-in for the gateway client; records every call."""

    def __init__(self) -> None:
        self.handler = None
        self.calls: list[tuple[Any, ...]] = []
        self.registered = True
        self.initialize_error: Optional[BaseException] = None
        self.send_error: Optional[BaseException] = None
        self.destroy_error: Optional[BaseException] = None
        self.destroy_delay = 0.0
        self.initialize_delay = 0.0
        self.active_initializations = 0
        self.max_active_initializations = 0
        self.state = "CONNECTED"
        self.closed = False

    def set_event_handler(self, handler) -> None:
        self.handler = handler

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def initialize(self) -> None:
        self.calls.append(("initialize",))
        self.active_initializations += 1
        self.max_active_initializations = max(self.max_active_initializations, self.active_initializations)
        try:
            if self.initialize_delay:
                await asyncio.sleep(self.initialize_delay)
            if self.initialize_error is not None:
                raise self.initialize_error
        finally:
            self.active_initializations -= 1

    async def destroy(self) -> None:
        self.calls.append(("destroy",))
        if self.destroy_delay:
            await asyncio.sleep(self.destroy_delay)
        if self.destroy_error is not None:
            raise self.destroy_error

    async def is_registered_user(self, chat_id: str) -> bool:
        self.calls.append(("is_registered_user", chat_id))
        return self.registered

    async def send_message(self, chat_id: str, text: str, *, send_seen: bool = False) -> None:
        self.calls.append(("send_message", chat_id, text, send_seen))
        if self.send_error is not None:
            raise self.send_error

    async def get_state(self) -> Optional[str]:
        self.calls.append(("get_state",))
        return self.state

    async def aclose(self) -> None:
        self.closed = True

    async def emit(self, event_type: str, **data: Any) -> None:
        assert self.handler is not None
        await self.handler(ClientEvent(type=event_type, data=data))


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        session_root=tmp_path,
        log_directory=tmp_path / "logs",
        reinit=ReinitSettings(
            base_delay_seconds=0.01,
            extended_delay_seconds=0.03,
            destroy_timeout_seconds=0.05,
            clear_destroy_timeout_seconds=0.05,
        ),
        qr=QrSettings(width=120, margin=2, print_ascii=False),
    )


@pytest.fixture
def fake_client() -> FakeMessagingClient:
    return FakeMessagingClient()


@pytest.fixture
def supervisor(settings: Settings, fake_client: FakeMessagingClient) -> SessionSupervisor:
    return SessionSupervisor(settings=settings, client=fake_client)


@pytest.fixture
def async_client_factory():
    def _factory(app):
        transport = httpx.ASGITransport(app=app)
        return httpx.AsyncClient(transport=transport, base_url="http://testserver")

    return _factory
