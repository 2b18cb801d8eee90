from __future__ import annotations

from typing import Mapping

from .exceptions import NetworkError, RemoteError, StoreError, TerminalError


def map_http_error(status_code: int, payload: Mapping[str, object] | None) -> NetworkError:
    payload = payload or {}
    message = str(payload.get("error") or payload.get("message") or "Request failed")
    return NetworkError(
        code=f"HTTP_{status_code}",
        message=message,
        details=payload.get("details"),
        status_code=status_code,
        raw_payload=dict(payload),
    )


def map_write_result(payload: object, status_code: int = 200) -> StoreError | None:
    """Translate a ``{success, error?}`` write acknowledgement into an error, if any."""
    if not isinstance(payload, Mapping):
        return NetworkError(
            code="INVALID_RESPONSE",
            message="Expected write acknowledgement to be a JSON object",
            status_code=status_code,
            raw_payload=payload,
        )
    if payload.get("success") is True:
        return None
    return RemoteError(
        code="WRITE_REJECTED",
        message=str(payload.get("error") or "Remote store rejected the write"),
        details=payload.get("details"),
        status_code=status_code,
        raw_payload=dict(payload),
    )


def to_operator_message(exc: Exception) -> str:
    if isinstance(exc, RemoteError):
        return f"Failed to save transaction: {exc.message}. Please try again."
    if isinstance(exc, NetworkError):
        return "Failed to save transaction: connection problem. Please try again."
    if isinstance(exc, TerminalError):
        return str(exc)
    return "Failed to process transaction. Please try again."
