"""Error taxonomy shared by the engine, workflows and CLI."""

from __future__ import annotations


class TrustifyError(Exception):
    """Base class for every error raised by trustify-cli."""


class ConfigError(TrustifyError):
    """Configuration could not be loaded or validated."""


class AuthError(TrustifyError):
    """A bearer token could not be obtained or refreshed.

    Fatal for the whole run: no request can be authorised without a token.
    """


class TransportError(TrustifyError):
    """Network failure, timeout or 5xx response that outlived all retries."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.cause = cause


class ClientError(TrustifyError):
    """Non-retryable 4xx response."""

    def __init__(self, status: int, body: str = "", message: str | None = None) -> None:
        self.status = status
        self.body = body
        if message is None:
            message = f"HTTP {status}: {body}" if body else f"HTTP {status}"
        super().__init__(message)


class NotFoundError(ClientError):
    """The requested resource does not exist (HTTP 404)."""

    def __init__(self, body: str = "") -> None:
        super().__init__(404, body, message="HTTP 404: Resource not found")


class SerializationError(TrustifyError):
    """The duplicate report file is missing or malformed."""


__all__ = [
    "AuthError",
    "ClientError",
    "ConfigError",
    "NotFoundError",
    "SerializationError",
    "TransportError",
    "TrustifyError",
]
