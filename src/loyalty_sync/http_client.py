from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests
from requests.adapters import HTTPAdapter

from .config import StoreConfig
from .error_mapper import map_http_error
from .exceptions import NetworkError

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], None]


@dataclass
class LastOperation:
    module: str
    operation: str
    duration_ms: int
    result: str
    attempts: int


@dataclass
class HttpClient:
    config: StoreConfig
    session: requests.Session | None = None
    sleep: Sleeper = time.sleep
    last_operation: LastOperation | None = None

    def __post_init__(self) -> None:
        if self.session is None:
            self.session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=self.config.max_connections,
                pool_maxsize=self.config.max_connections,
            )
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    def request(
        self,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        module: str = "unknown",
        operation: str = "unknown",
    ) -> Any:
        """Send one request to the store URL and return the decoded JSON body.

        GET is retried on transport errors and 5xx responses, up to
        ``config.retries`` extra attempts with exponential backoff. Any other
        method is attempted exactly once.
        """
        if self.session is None:
            raise RuntimeError("HTTP session not initialized")
        normalized_method = method.upper()
        url = self.config.store_url
        request_headers = {"Accept": "application/json"}

        can_retry = normalized_method in {"GET", "HEAD"}
        attempts = self.config.retries + 1 if can_retry else 1

        started = time.monotonic()
        response: requests.Response | None = None
        attempt = 0
        for attempt in range(attempts):
            try:
                response = self.session.request(
                    method=normalized_method,
                    url=url,
                    headers=request_headers,
                    json=json_body,
                    params=params,
                    timeout=(self.config.connect_timeout_seconds, self.config.read_timeout_seconds),
                    verify=self.config.verify_ssl,
                )
            except requests.RequestException as exc:
                if attempt >= attempts - 1:
                    self._record_operation(module, operation, started, "error", attempt + 1)
                    raise NetworkError(
                        code="TRANSPORT_ERROR",
                        message=str(exc),
                        details={"type": type(exc).__name__},
                    ) from exc
                logger.warning(
                    "store_request_retry",
                    extra={"operation": operation, "attempt": attempt + 1, "reason": type(exc).__name__},
                )
            else:
                if response.status_code < 500 or attempt >= attempts - 1:
                    break
                logger.warning(
                    "store_request_retry",
                    extra={"operation": operation, "attempt": attempt + 1, "reason": response.status_code},
                )
            self.sleep(self.config.retry_backoff_seconds * (2**attempt))

        if response is None:
            raise RuntimeError("HTTP request finished without a response")

        if not response.ok:
            payload: dict[str, Any] | None
            try:
                decoded = response.json()
                payload = decoded if isinstance(decoded, dict) else {"message": response.text}
            except ValueError:
                payload = {"message": response.text}
            self._record_operation(module, operation, started, "error", attempt + 1)
            raise map_http_error(response.status_code, payload)

        try:
            parsed = response.json()
        except ValueError as exc:
            self._record_operation(module, operation, started, "error", attempt + 1)
            raise NetworkError(
                code="INVALID_RESPONSE",
                message="Store response was not valid JSON",
                details={"body": response.text[:200]},
                status_code=response.status_code,
            ) from exc
        self._record_operation(module, operation, started, "success", attempt + 1)
        return parsed

    def _record_operation(self, module: str, operation: str, started: float, result: str, attempts: int) -> None:
        self.last_operation = LastOperation(
            module=module,
            operation=operation,
            duration_ms=int((time.monotonic() - started) * 1000),
            result=result,
            attempts=attempts,
        )
