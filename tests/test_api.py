from __future__ import annotations

import pytest

from app.main import create_app
from app.state import ClientEvent

from conftest import wait_until


@pytest.fixture
def relay_app(supervisor):
    return create_app(supervisor=supervisor, manage_lifecycle=False)


@pytest.mark.anyio
async def test_status_reports_pending_until_ready(relay_app, supervisor, async_client_factory) -> None:
    async with async_client_factory(relay_app) as client:
        response = await client.get("/status")
        assert response.status_code == 200
        data = response.json()
        assert data["whatsapp"] == "pending"
        assert data["qr_available"] is False
        assert data["session_state"] == "uninitialized"

        await supervisor.handle_event(ClientEvent("qr", {"qr": "2@payload"}))
        data = (await client.get("/status")).json()
        assert data["qr_available"] is True
        assert data["session_state"] == "awaiting_pairing"

        await supervisor.handle_event(ClientEvent("ready"))
        data = (await client.get("/status")).json()
        assert data["whatsapp"] == "ready"
        assert data["qr_available"] is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {"to": "5551234", "message": "hi"},
        {},
        None,
    ],
)
async def test_send_rejected_while_not_ready(relay_app, fake_client, async_client_factory, body) -> None:
    async with async_client_factory(relay_app) as client:
        if body is None:
            response = await client.post("/send", content=b"not json", headers={"content-type": "application/json"})
        else:
            response = await client.post("/send", json=body)
    assert response.status_code == 400
    assert "error" in response.json()
    assert fake_client.calls == []


@pytest.mark.anyio
async def test_send_success_normalizes_recipient(relay_app, supervisor, fake_client, async_client_factory) -> None:
    await supervisor.handle_event(ClientEvent("ready"))
    async with async_client_factory(relay_app) as client:
        first = await client.post("/send", json={"to": "5551234", "message": "hello"})
        second = await client.post("/send", json={"to": "5551234@c.us", "message": "hello"})

    assert first.status_code == 200
    assert first.json() == {"status": "sent", "to": "5551234@c.us"}
    assert second.json() == {"status": "sent", "to": "5551234@c.us"}
    assert fake_client.count("send_message") == 2


@pytest.mark.anyio
async def test_send_missing_parameters(relay_app, supervisor, async_client_factory) -> None:
    await supervisor.handle_event(ClientEvent("ready"))
    async with async_client_factory(relay_app) as client:
        response = await client.post("/send", json={"to": "5551234"})
    assert response.status_code == 400
    assert "to, message" in response.json()["error"]


@pytest.mark.anyio
async def test_send_unregistered_number(relay_app, supervisor, fake_client, async_client_factory) -> None:
    await supervisor.handle_event(ClientEvent("ready"))
    fake_client.registered = False
    async with async_client_factory(relay_app) as client:
        response = await client.post("/send", json={"to": "5551234", "message": "hello"})
    assert response.status_code == 400
    assert fake_client.count("send_message") == 0


@pytest.mark.anyio
async def test_send_invalidated_session_returns_503(relay_app, supervisor, fake_client, async_client_factory) -> None:
    await supervisor.handle_event(ClientEvent("ready"))
    fake_client.send_error = RuntimeError("Protocol error (Runtime.callFunctionOn): Session closed.")
    async with async_client_factory(relay_app) as client:
        response = await client.post("/send", json={"to": "5551234", "message": "hello"})
        follow_up = await client.post("/send", json={"to": "5551234", "message": "hello"})

    assert response.status_code == 503
    assert "Reconnecting" in response.json()["error"]
    assert follow_up.status_code == 400
    assert not supervisor.is_ready
    await supervisor.scheduler.stop()


@pytest.mark.anyio
async def test_send_generic_failure_returns_500(relay_app, supervisor, fake_client, async_client_factory) -> None:
    await supervisor.handle_event(ClientEvent("ready"))
    fake_client.send_error = RuntimeError("media upload failed")
    async with async_client_factory(relay_app) as client:
        response = await client.post("/send", json={"to": "5551234", "message": "hello"})
    assert response.status_code == 500
    assert response.json() == {"error": "Error sending message."}
    assert supervisor.is_ready


@pytest.mark.anyio
async def test_qr_endpoints(relay_app, supervisor, async_client_factory) -> None:
    async with async_client_factory(relay_app) as client:
        missing_page = await client.get("/qr")
        missing_png = await client.get("/qr.png")
        assert missing_page.status_code == 404
        assert "No QR available" in missing_page.text
        assert missing_png.status_code == 404

        await supervisor.handle_event(ClientEvent("qr", {"qr": "2@payload"}))
        page = await client.get("/qr")
        png = await client.get("/qr.png")

    assert page.status_code == 200
    assert page.headers["content-type"].startswith("text/html")
    assert supervisor.credential.data_url in page.text
    assert png.status_code == 200
    assert png.headers["content-type"] == "image/png"
    assert png.content == supervisor.credential.png


@pytest.mark.anyio
async def test_session_clear(relay_app, supervisor, fake_client, settings, async_client_factory) -> None:
    settings.session_paths[0].mkdir(parents=True)
    await supervisor.handle_event(ClientEvent("ready"))

    async with async_client_factory(relay_app) as client:
        response = await client.post("/session/clear")
        status = (await client.get("/status")).json()

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["removed"] == [str(settings.session_paths[0])]
    assert status["whatsapp"] == "pending"
    assert fake_client.count("initialize") == 1


@pytest.mark.anyio
async def test_session_clear_failure(relay_app, fake_client, async_client_factory) -> None:
    fake_client.initialize_error = RuntimeError("browser failed to launch")
    async with async_client_factory(relay_app) as client:
        response = await client.post("/session/clear")
    assert response.status_code == 500
    assert response.json()["detail"] == "browser failed to launch"


@pytest.mark.anyio
async def test_healthz_stays_up(relay_app, async_client_factory) -> None:
    async with async_client_factory(relay_app) as client:
        response = await client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "session_state": "uninitialized"}


@pytest.mark.anyio
async def test_send_rejected_while_reinit_sequence_runs(relay_app, supervisor, fake_client, async_client_factory) -> None:
    await supervisor.handle_event(ClientEvent("ready"))
    fake_client.destroy_delay = 0.3
    supervisor.scheduler.settings = supervisor.scheduler.settings.model_copy(
        update={"destroy_timeout_seconds": 1.0}
    )
    supervisor.schedule_reinit()
    await wait_until(lambda: fake_client.count("destroy") == 1)

    async with async_client_factory(relay_app) as client:
        response = await client.post("/send", json={"to": "5551234", "message": "hello"})
        status = (await client.get("/status")).json()

    assert supervisor.scheduler.attempts == 1
    assert fake_client.count("initialize") == 0
    assert response.status_code == 400
    assert fake_client.count("is_registered_user") == 0
    assert fake_client.count("send_message") == 0
    assert status["reinit_in_progress"] is True
    await supervisor.scheduler.wait_idle()
    assert fake_client.count("initialize") == 1
