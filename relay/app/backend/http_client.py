"""HTTP client helpers for the automation gateway REST endpoints."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..config import Settings
from .base import GatewayError

logger = logging.getLogger(__name__)


class GatewayHttpClient:
    """Thin wrapper around the gateway REST API.

    Every failure is re-raised as :class:`GatewayError` carrying the gateway's
    error text, so callers can classify it like any other automation failure.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=self.settings.gateway_api_url,
            timeout=self.settings.gateway_timeout_seconds,
            transport=transport,
        )

    async def initialize_session(self) -> None:
        payload = {
            "auth_timeout_ms": self.settings.auth_timeout_ms,
            "puppeteer": {
                "executable_path": self.settings.puppeteer_executable_path,
                "headless": self.settings.browser_headless,
                "args": list(self.settings.browser_args),
            },
        }
        logger.info("gateway.initialize: starting client")
        # Pairing can legitimately take as long as the auth timeout.
        timeout = max(self.settings.gateway_timeout_seconds, self.settings.auth_timeout_ms / 1000.0)
        await self._request("POST", "/session/initialize", json=payload, timeout=timeout)

    async def destroy_session(self) -> None:
        logger.info("gateway.destroy: tearing down client")
        await self._request("POST", "/session/destroy")

    async def is_registered_user(self, chat_id: str) -> bool:
        data = await self._request("GET", f"/contacts/{quote(chat_id, safe='@.')}/registered")
        return bool(data.get("registered"))

    async def send_message(self, chat_id: str, text: str, *, send_seen: bool = False) -> Dict[str, Any]:
        payload = {"chat_id": chat_id, "text": text, "options": {"sendSeen": send_seen}}
        return await self._request("POST", "/messages", json=payload)

    async def get_state(self) -> Optional[str]:
        data = await self._request("GET", "/session/state")
        state = data.get("state")
        return str(state) if state is not None else None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error("gateway %s %s: request timeout", method, path)
            raise GatewayError(f"gateway timeout on {path}") from e
        except httpx.NetworkError as e:
            logger.error("gateway %s %s: network error - %s", method, path, e)
            raise GatewayError(f"gateway unreachable: {e}") from e
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error("gateway %s %s: HTTP %d - %s", method, path, e.response.status_code, detail)
            raise GatewayError(detail, status_code=e.response.status_code) from e

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.warning("gateway %s %s: non-JSON response body", method, path)
            return {}
        return data if isinstance(data, dict) else {"result": data}

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if value:
                return str(value)
    return str(body)
