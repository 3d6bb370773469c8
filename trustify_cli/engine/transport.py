"""Authenticated HTTP transport with retry, backoff and token refresh."""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping

import httpx
import structlog

from ..errors import ClientError, NotFoundError, TransportError
from .auth import TokenManager

AUTH_STATUSES = frozenset({401, 403})
RETRYABLE_CLIENT_STATUSES = frozenset({408})


class Transport:
    """Single point through which every API call passes."""

    def __init__(
        self,
        base_url: str,
        token_manager: TokenManager | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float = 60.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.base_url = base_url.rstrip("/")
        self.token_manager = token_manager
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self.logger = logger or structlog.get_logger("trustify_cli.transport")

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def url(self, path: str) -> str:
        return f"{self.base_url}/api{path}"

    # ------------------------------------------------------------------
    def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return self.execute("GET", path, params=params)

    def delete(self, path: str) -> Any:
        return self.execute("DELETE", path)

    def execute(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Perform one logical API call and return the parsed response body.

        Transient failures (network errors, timeouts, 408 and 5xx) are retried
        with exponential backoff up to ``max_attempts`` attempts. A 401/403 with
        auth enabled triggers exactly one token refresh and one retry.
        """

        url = self.url(path)
        attempt = 0
        auth_retried = False
        while True:
            attempt += 1
            credential = self.token_manager.get_valid_token() if self.token_manager else None
            headers = {"Accept": "application/json"}
            if credential is not None:
                headers["Authorization"] = f"Bearer {credential.access_token}"

            request_kwargs: dict[str, Any] = {
                "params": dict(params) if params else None,
                "headers": headers,
                "timeout": self.timeout,
            }
            if body is not None:
                request_kwargs["json"] = body

            try:
                response = self._client.request(method, url, **request_kwargs)
            except httpx.TransportError as exc:
                error = TransportError(f"{method} {path} failed: {exc}", cause=exc)
            else:
                status = response.status_code
                if response.is_success:
                    return self._parse_body(response)
                if status in AUTH_STATUSES:
                    if credential is not None and not auth_retried:
                        auth_retried = True
                        attempt -= 1
                        self.logger.info("auth_rejected", method=method, path=path, status=status)
                        self.token_manager.invalidate(credential)  # type: ignore[union-attr]
                        continue
                    raise ClientError(status, response.text)
                if status >= 500 or status in RETRYABLE_CLIENT_STATUSES:
                    error = TransportError(
                        f"{method} {path} failed: HTTP {status}: {response.text}",
                        status=status,
                    )
                elif status == 404:
                    raise NotFoundError(response.text)
                else:
                    self.logger.debug("request_failed", method=method, path=path, status=status)
                    raise ClientError(status, response.text)

            if attempt >= self.max_attempts:
                raise error
            delay = self._backoff(attempt)
            self.logger.warning(
                "request_retry",
                method=method,
                path=path,
                attempt=attempt,
                max_attempts=self.max_attempts,
                delay=delay,
                error=str(error),
            )
            self._sleep(delay)

    # ------------------------------------------------------------------
    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


__all__ = ["AUTH_STATUSES", "Transport"]
