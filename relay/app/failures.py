"""Classification of automation-layer failures.

Puppeteer and the web client it drives throw a steady stream of errors that
are not fatal: the page navigates under an in-flight evaluation, a CDP reply
comes back without a body, a frame detaches during a reload. They surface as
uncaught exceptions or as rejected calls, and the only way to tell them apart
from real bugs is the message text.

The classification is:
- deterministic (plain substring matching)
- total (``None``, empty strings and arbitrary objects are accepted)
- configurable (extra signatures are appended to the built-in table)

Possible outcomes:
- ``FailureKind.RETRYABLE``    known transient glitch, recover via reinit
- ``FailureKind.AUTH_TIMEOUT`` pairing page did not load in time, recover via reinit
- ``FailureKind.FATAL``        unrecognised, log only
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

from .state import FailureKind

RETRYABLE_SIGNATURES: tuple[str, ...] = (
    "Execution context was destroyed",
    "Protocol error (Network.getResponseBody)",
    "ProtocolError",
    "Protocol error (Runtime.callFunctionOn)",
    "detached Frame",
    "Attempted to use detached",
    "No resource with given identifier found",
    "Target closed",
    "Session closed",
    # Raised by the gateway client when the automation gateway itself is restarting.
    "gateway unreachable",
    "gateway timeout",
)

# Subset meaning the page behind the client is gone; a send cannot succeed until reinit.
SESSION_INVALIDATED_SIGNATURES: tuple[str, ...] = (
    "Execution context was destroyed",
    "Protocol error (Runtime.callFunctionOn)",
    "detached Frame",
    "Attempted to use detached",
    "Target closed",
)

AUTH_TIMEOUT_MARKER = "auth timeout"


def signal_text(signal: object) -> str:
    """Best-effort message text for an exception, string or anything else."""
    if signal is None:
        return ""
    if isinstance(signal, str):
        return signal
    try:
        if isinstance(signal, BaseException):
            text = str(signal)
            return text or type(signal).__name__
        message = getattr(signal, "message", None)
        if isinstance(message, str) and message:
            return message
        return str(signal)
    except Exception:
        return f"<unprintable {type(signal).__name__}>"


def _contains_any(haystack: str, needles: Iterable[str]) -> bool:
    return any(n and n in haystack for n in needles)


def classify_failure(signal: object, extra_signatures: Optional[Sequence[str]] = None) -> FailureKind:
    """Map a failure signal to a recovery decision. Never raises."""
    text = signal_text(signal)

    if _contains_any(text, RETRYABLE_SIGNATURES):
        return FailureKind.RETRYABLE
    if extra_signatures and _contains_any(text, extra_signatures):
        return FailureKind.RETRYABLE
    if AUTH_TIMEOUT_MARKER in text.lower():
        return FailureKind.AUTH_TIMEOUT
    return FailureKind.FATAL


def is_session_invalidated(signal: object) -> bool:
    """True when a failed call means the underlying page/session is gone."""
    return _contains_any(signal_text(signal), SESSION_INVALIDATED_SIGNATURES)


def truncate(text: str, limit: int = 120) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


__all__ = [
    "AUTH_TIMEOUT_MARKER",
    "RETRYABLE_SIGNATURES",
    "SESSION_INVALIDATED_SIGNATURES",
    "classify_failure",
    "is_session_invalidated",
    "signal_text",
    "truncate",
]
