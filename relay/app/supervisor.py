"""Session lifecycle supervision for the messaging relay."""
from __future__ import annotations

import asyncio
import logging
import shutil
import time
from typing import Any, Dict, List, Optional

from .backend.base import MessagingClient
from .backend.gateway import GatewayClient
from .config import Settings, get_settings
from .failures import classify_failure, is_session_invalidated, signal_text, truncate
from .qr import build_credential, render_ascii
from .reinit import ReinitScheduler
from .state import ClientEvent, FailureKind, PairingCredential, SessionState

logger = logging.getLogger(__name__)

CHAT_ID_SUFFIX = "@c.us"


class SessionFlowError(RuntimeError):
    """Raised when a relay request cannot be served; carries the HTTP status."""

    status_code: int = 500

    def __init__(self, user_message: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message


class SessionNotReadyError(SessionFlowError):
    status_code = 400


class MissingParametersError(SessionFlowError):
    status_code = 400


class RecipientNotRegisteredError(SessionFlowError):
    status_code = 400


class SessionInvalidatedError(SessionFlowError):
    status_code = 503


class MessageSendError(SessionFlowError):
    status_code = 500


def normalize_chat_id(to: str) -> str:
    """Phone number (or chat id) to the backend's chat identifier; idempotent."""
    to = to.strip()
    return to if CHAT_ID_SUFFIX in to else f"{to}{CHAT_ID_SUFFIX}"


class SessionSupervisor:
    """Owns session readiness and the pairing QR; drives recovery of the client.

    State is written only from here and from the reinit scheduler hook. The
    HTTP layer reads it through ``state``/``is_ready``/``credential`` and acts
    through ``send_message``, ``clear_session`` and ``schedule_reinit``.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        client: Optional[MessagingClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client: MessagingClient = client or GatewayClient(self.settings)
        self._state: SessionState = SessionState.UNINITIALIZED
        self._state_changed_at: float = time.time()
        self._credential: Optional[PairingCredential] = None
        self._events: asyncio.Queue[ClientEvent] = asyncio.Queue()
        self._scheduler = ReinitScheduler(
            self._client,
            self.settings.reinit,
            on_scheduled=self._on_reinit_scheduled,
        )
        self._event_task: Optional[asyncio.Task[None]] = None
        self._init_task: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_exception_handler: Any = None

    # ------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.READY

    @property
    def credential(self) -> Optional[PairingCredential]:
        return self._credential

    @property
    def qr_available(self) -> bool:
        return self._credential is not None

    @property
    def scheduler(self) -> ReinitScheduler:
        return self._scheduler

    def status(self) -> Dict[str, Any]:
        return {
            "whatsapp": "ready" if self.is_ready else "pending",
            "qr_available": self.qr_available,
            "session_state": self._state.value,
            "state_age_seconds": round(time.time() - self._state_changed_at, 1),
            "reinit_in_progress": self._scheduler.in_progress,
        }

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self, *, initialize: bool = True) -> None:
        logger.info("Starting session supervisor")
        self.install_error_boundary(asyncio.get_running_loop())
        self._client.set_event_handler(self.dispatch)
        if not self._event_task or self._event_task.done():
            self._event_task = asyncio.create_task(self._event_loop(), name="session-events")
        if initialize:
            self._init_task = asyncio.create_task(self._initialize_client(), name="client-initialize")
        logger.info("Session supervisor started")

    async def stop(self) -> None:
        logger.info("Stopping session supervisor")
        await self._scheduler.stop()

        for task in (self._init_task, self._event_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning("Error stopping supervisor task: %s", e)
        self._init_task = None
        self._event_task = None

        self._client.set_event_handler(None)
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing messaging client: %s", e)

        if self._loop is not None:
            self._loop.set_exception_handler(self._previous_exception_handler)
            self._loop = None
        logger.info("Session supervisor stopped")

    def install_error_boundary(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route errors nobody awaited through the failure classifier instead of the default handler."""
        if self._loop is loop:
            return
        self._loop = loop
        self._previous_exception_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)

    async def _initialize_client(self) -> None:
        try:
            await self._client.initialize()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.report_failure(exc, source="initialize")

    # ------------------------------------------------------------
    # Inbound event channel
    # ------------------------------------------------------------

    async def dispatch(self, event: ClientEvent) -> None:
        """Client event callback; events are applied in order by the event loop task."""
        self._events.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every dispatched event has been applied."""
        await self._events.join()

    async def _event_loop(self) -> None:
        try:
            while True:
                event = await self._events.get()
                try:
                    await self.handle_event(event)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.report_failure(exc, source=f"{event.type} handler")
                finally:
                    self._events.task_done()
        except asyncio.CancelledError:
            logger.debug("Session event loop cancelled")
            raise

    async def handle_event(self, event: ClientEvent) -> None:
        if event.type == "qr":
            self._on_qr(event.data.get("qr") or event.data.get("code") or "")
        elif event.type == "authenticated":
            logger.info("🔑 Authenticated; waiting for the client to finish loading")
            self._set_state(SessionState.AUTHENTICATED)
        elif event.type == "ready":
            self._credential = None
            self._set_state(SessionState.READY)
            logger.info("✅ WhatsApp ready")
        elif event.type == "auth_failure":
            logger.error("❌ Authentication failure: %s", event.data.get("message") or "no detail")
            if self.is_ready:
                self._set_state(SessionState.DISCONNECTED)
        elif event.type == "disconnected":
            logger.warning("❌ Client disconnected: %s", event.data.get("reason") or "unknown")
            self._set_state(SessionState.DISCONNECTED)
            self.schedule_reinit()
        elif event.type == "error":
            self.report_failure(event.data.get("message") or "", source="client event")
        else:
            logger.debug("Ignoring client event %s", event.type)

    def _on_qr(self, payload: str) -> None:
        if not payload:
            logger.warning("QR event without payload; ignoring")
            return
        logger.info("QR received; scan it to link the device (or open GET /qr in a browser)")
        if self.settings.qr.print_ascii:
            try:
                logger.info("\n%s", render_ascii(payload))
            except Exception as exc:
                logger.debug("ASCII QR rendering failed: %s", exc)
        try:
            self._credential = build_credential(payload, self.settings.qr)
        except Exception as exc:
            logger.warning("Failed to render QR image: %s", exc)
            self._credential = None
        self._set_state(SessionState.AWAITING_PAIRING)

    # ------------------------------------------------------------
    # Failures & recovery
    # ------------------------------------------------------------

    def schedule_reinit(self) -> bool:
        return self._scheduler.schedule()

    def _on_reinit_scheduled(self) -> None:
        self._set_state(SessionState.REINITIALIZING)

    def report_failure(
        self,
        signal: object,
        *,
        source: str = "uncaught",
        exc_info: Optional[BaseException] = None,
    ) -> FailureKind:
        """Classify a failure and recover if it is transient. Never raises."""
        text = signal_text(signal)
        kind = classify_failure(text, self.settings.extra_retryable_signatures)
        if kind is FailureKind.RETRYABLE:
            logger.error("⚠️ Internal Puppeteer/WhatsApp error from %s (will retry): %s", source, truncate(text))
            self.schedule_reinit()
        elif kind is FailureKind.AUTH_TIMEOUT:
            logger.error(
                "⚠️ Authentication timeout (pairing page took too long to load); retrying in %.0fs",
                self._scheduler.next_delay,
            )
            self.schedule_reinit()
        else:
            if exc_info is None and isinstance(signal, BaseException):
                exc_info = signal
            logger.error("Unexpected error from %s: %s", source, text or "unknown error", exc_info=exc_info)
        return kind

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        if isinstance(exc, asyncio.CancelledError):
            return
        signal: object = exc if exc is not None else context.get("message", "")
        try:
            self.report_failure(signal, source="event loop", exc_info=exc)
        except Exception:  # pragma: no cover - last line of defence
            logger.exception("Error boundary failed while handling %s", context.get("message"))

    def mark_session_invalidated(self, reason: str) -> None:
        logger.error("Session invalidated: %s", truncate(reason))
        if self._state == SessionState.READY:
            self._set_state(SessionState.DISCONNECTED)
        self.schedule_reinit()

    # ------------------------------------------------------------
    # Operations used by the HTTP surface
    # ------------------------------------------------------------

    async def send_message(self, to: Any, message: Any) -> str:
        """Send one text message; returns the chat id it was sent to."""
        if not self.is_ready:
            raise SessionNotReadyError("WhatsApp is not ready yet.")
        if not isinstance(to, str) or not isinstance(message, str) or not to.strip() or not message:
            raise MissingParametersError("Missing parameters: to, message")

        chat_id = normalize_chat_id(to)
        try:
            registered = await self._client.is_registered_user(chat_id)
            if not registered:
                raise RecipientNotRegisteredError("Number is not registered on WhatsApp")
            await self._client.send_message(chat_id, message, send_seen=False)
        except SessionFlowError:
            raise
        except Exception as exc:
            if is_session_invalidated(exc):
                self.mark_session_invalidated(signal_text(exc))
                raise SessionInvalidatedError(
                    "Client disconnected or session unavailable. Reconnecting; retry in a few seconds.",
                    log_message=signal_text(exc),
                ) from exc
            logger.error("Error sending message to %s: %s", chat_id, signal_text(exc))
            await self._log_client_state()
            raise MessageSendError("Error sending message.", log_message=signal_text(exc)) from exc

        logger.info("Message sent to %s: %s", chat_id, message)
        return chat_id

    async def _log_client_state(self) -> None:
        try:
            logger.info("Current client state: %s", await self._client.get_state())
        except Exception as exc:
            logger.error("Could not fetch client state: %s", signal_text(exc))

    async def clear_session(self) -> List[str]:
        """Drop stored credentials and force a fresh pairing. Returns removed directories."""
        logger.info("Clearing session storage and forcing a new pairing")
        self._drop_session()
        # A reinit already past its timer runs to completion before this teardown starts.
        await self._scheduler.wait_idle()
        # Events handled while it finished may have re-armed a job or marked the session ready.
        self._drop_session()
        await self._scheduler.destroy_quietly(self.settings.reinit.clear_destroy_timeout_seconds)

        paths = self.settings.session_paths
        loop = asyncio.get_running_loop()

        def _remove_dirs() -> List[str]:
            removed: List[str] = []
            for path in paths:
                try:
                    shutil.rmtree(path)
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.error("Error deleting %s: %s", path, exc)
                    continue
                logger.info("Deleted session folder: %s", path)
                removed.append(str(path))
            return removed

        removed = await loop.run_in_executor(None, _remove_dirs)
        await self._client.initialize()
        return removed

    def _drop_session(self) -> None:
        self._credential = None
        self._scheduler.cancel()
        self._set_state(SessionState.UNINITIALIZED)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.info("Session state: %s → %s", self._state.value, state.value)
        self._state = state
        self._state_changed_at = time.time()


__all__ = [
    "MessageSendError",
    "MissingParametersError",
    "RecipientNotRegisteredError",
    "SessionFlowError",
    "SessionInvalidatedError",
    "SessionNotReadyError",
    "SessionSupervisor",
    "normalize_chat_id",
]
