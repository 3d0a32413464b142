"""Shared relay state definitions."""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict


class SessionState(str, enum.Enum):
    """
    Messaging session lifecycle:

    1. UNINITIALIZED     - Client not started yet, or session storage just cleared
    2. AWAITING_PAIRING  - QR issued, waiting for the phone to scan it
    3. AUTHENTICATED     - Credentials accepted, web client still loading
    4. READY             - Fully usable; the only state that admits /send
    5. DISCONNECTED      - Backend reported a disconnect, reinit pending
    6. REINITIALIZING    - Destroy + initialize cycle scheduled or running
    """
    UNINITIALIZED = "uninitialized"
    AWAITING_PAIRING = "awaiting_pairing"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    REINITIALIZING = "reinitializing"


class FailureKind(str, enum.Enum):
    RETRYABLE = "retryable"
    AUTH_TIMEOUT = "auth_timeout"
    FATAL = "fatal"


@dataclass(frozen=True)
class PairingCredential:
    """A single QR pairing payload plus its rendered forms."""

    raw: str
    data_url: str
    png: bytes
    issued_at: float = field(default_factory=time.time)


@dataclass
class ClientEvent:
    """Lifecycle event emitted by the messaging client."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)


__all__ = ["SessionState", "FailureKind", "PairingCredential", "ClientEvent"]
