"""FastAPI entry-point for the wa-relay service."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from .config import Settings, get_settings
from .failures import signal_text
from .logging_config import configure_logging
from .supervisor import SessionFlowError, SessionSupervisor

logger = logging.getLogger(__name__)

QR_UNAVAILABLE_HTML = (
    "<html><body><p>No QR available yet. Wait for the relay to generate one "
    "(this can take 1-2 minutes) and reload this page.</p>"
    "<p><a href='/qr'>Reload</a></p></body></html>"
)

QR_PAGE_TEMPLATE = (
    '<html><head><meta charset="utf-8">'
    '<meta name="viewport" content="width=device-width, initial-scale=1"></head>'
    '<body style="font-family:sans-serif;text-align:center;padding:2rem">'
    "<h1>Scan with WhatsApp</h1>"
    "<p>Scan with your phone (WhatsApp → Linked devices → Link a device)</p>"
    '<img src="{data_url}" alt="QR" style="max-width:100%"/>'
    '<p><a href="/qr">Refresh QR</a></p></body></html>'
)


def create_app(
    settings: Optional[Settings] = None,
    *,
    supervisor: Optional[SessionSupervisor] = None,
    manage_lifecycle: bool = True,
) -> FastAPI:
    settings = settings or (supervisor.settings if supervisor else get_settings())
    manager = supervisor or SessionSupervisor(settings=settings)

    app = FastAPI(title="wa-relay", version="0.1.0")
    app.state.supervisor = manager

    @app.exception_handler(SessionFlowError)
    async def session_flow_error_handler(request: Request, exc: SessionFlowError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.user_message})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to keep the API reachable."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if manage_lifecycle:

        @app.on_event("startup")
        async def on_startup() -> None:
            try:
                await manager.start()
                logger.info(f"API ready on port {settings.relay_port}")
            except Exception as e:
                logger.exception(f"Failed to start session supervisor: {e}")
                logger.error("Application startup failed - /send will stay unavailable")
                # Don't re-raise - the HTTP surface must stay up

        @app.on_event("shutdown")
        async def on_shutdown() -> None:
            try:
                await manager.stop()
                logger.info("Application shutdown complete")
            except Exception as e:
                logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "session_state": manager.state.value})

    @app.get("/status")
    async def session_status() -> JSONResponse:
        return JSONResponse(manager.status())

    @app.get("/qr")
    async def qr_page() -> HTMLResponse:
        """Show the current pairing QR in a browser (handy when the console is not visible)."""
        credential = manager.credential
        if credential is None:
            return HTMLResponse(QR_UNAVAILABLE_HTML, status_code=status.HTTP_404_NOT_FOUND)
        return HTMLResponse(QR_PAGE_TEMPLATE.format(data_url=credential.data_url))

    @app.get("/qr.png")
    async def qr_png() -> Response:
        credential = manager.credential
        if credential is None:
            return JSONResponse(
                {"error": "QR not available yet."},
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return Response(
            content=credential.png,
            media_type="image/png",
            headers={"Cache-Control": "no-store"},
        )

    @app.post("/send")
    async def send(request: Request) -> JSONResponse:
        body = await _read_json(request)
        chat_id = await manager.send_message(body.get("to"), body.get("message"))
        return JSONResponse({"status": "sent", "to": chat_id})

    @app.post("/session/clear")
    async def clear_session() -> JSONResponse:
        """Delete stored session data and force a new QR without entering the container."""
        try:
            removed = await manager.clear_session()
        except Exception as e:
            logger.error(f"Error in session/clear: {signal_text(e)}")
            return JSONResponse(
                {"error": "Error clearing session.", "detail": signal_text(e)},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return JSONResponse({
            "ok": True,
            "message": "Session cleared. Open GET /qr to scan again.",
            "removed": removed,
        })

    return app


async def _read_json(request: Request) -> dict[str, Any]:
    """Lenient body parsing: anything that is not a JSON object counts as empty."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        logger.warning("Ignoring malformed JSON body on %s", request.url.path)
        return {}
    return payload if isinstance(payload, dict) else {}


def build_default_app() -> FastAPI:
    """uvicorn factory: ``uvicorn --factory app.main:build_default_app``."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)
