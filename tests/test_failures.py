from __future__ import annotations

import pytest

from app.failures import (
    RETRYABLE_SIGNATURES,
    classify_failure,
    is_session_invalidated,
    signal_text,
)
from app.state import FailureKind


@pytest.mark.parametrize("signature", RETRYABLE_SIGNATURES)
def test_known_transient_signatures_are_retryable(signature: str) -> None:
    message = f"Error: {signature} at ExecutionContext._evaluateInternal"
    assert classify_failure(message) is FailureKind.RETRYABLE
    assert classify_failure(RuntimeError(message)) is FailureKind.RETRYABLE


def test_auth_timeout_is_classified_separately() -> None:
    assert classify_failure("auth timeout") is FailureKind.AUTH_TIMEOUT
    assert classify_failure(RuntimeError("Auth Timeout waiting for QR")) is FailureKind.AUTH_TIMEOUT


def test_transient_signature_wins_over_auth_timeout_marker() -> None:
    message = "auth timeout: Execution context was destroyed"
    assert classify_failure(message) is FailureKind.RETRYABLE


@pytest.mark.parametrize(
    "signal",
    [
        "TypeError: Cannot read properties of undefined (reading 'id')",
        "",
        None,
        ValueError(),
        object(),
    ],
)
def test_unrecognised_signals_are_fatal(signal: object) -> None:
    assert classify_failure(signal) is FailureKind.FATAL


def test_extra_signatures_extend_the_table() -> None:
    message = "net::ERR_CONNECTION_RESET at https://web.whatsapp.com"
    assert classify_failure(message) is FailureKind.FATAL
    assert classify_failure(message, ["ERR_CONNECTION_RESET"]) is FailureKind.RETRYABLE
    # Empty entries must not turn every message retryable.
    assert classify_failure("boom", [""]) is FailureKind.FATAL


def test_classification_survives_unprintable_objects() -> None:
    class Broken:
        def __str__(self) -> str:
            raise RuntimeError("no")

    assert signal_text(Broken()).startswith("<unprintable")
    assert classify_failure(Broken()) is FailureKind.FATAL


def test_signal_text_prefers_exception_message() -> None:
    assert signal_text(RuntimeError("Target closed")) == "Target closed"
    assert signal_text(KeyError) != ""
    assert signal_text(TimeoutError()) == "TimeoutError"


def test_session_invalidated_subset() -> None:
    assert is_session_invalidated(RuntimeError("Execution context was destroyed, most likely because of a navigation"))
    assert is_session_invalidated("Protocol error (Runtime.callFunctionOn): Target closed.")
    assert not is_session_invalidated("Protocol error (Network.getResponseBody): No data found")
    assert not is_session_invalidated("chat not found")
