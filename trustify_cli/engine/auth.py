"""OAuth2 client-credentials token lifecycle with single-flight refresh.

The manager keeps one cached :class:`Credential` shared by every worker
thread. When the cached token is missing or about to expire, the first caller
becomes the *leader* of a refresh flight and performs the grant request while
all other callers wait on that same flight and receive its result. The lock
only guards the cache and the flight pointer; it is never held across network
I/O.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Event, Lock
from typing import Any, Callable

import httpx
import structlog

from ..errors import AuthError

TOKEN_PATH = "protocol/openid-connect/token"
_REJECTED_CLIENT_ERRORS = {"invalid_client", "unauthorized_client"}


def build_token_url(sso_url: str) -> str:
    """Append the OpenID Connect token path unless the URL already ends with it."""

    if sso_url.endswith("/token"):
        return sso_url
    if sso_url.endswith("/"):
        return f"{sso_url}{TOKEN_PATH}"
    return f"{sso_url}/{TOKEN_PATH}"


@dataclass(frozen=True, slots=True)
class AuthCredentials:
    """Client credentials used for the grant request."""

    token_url: str
    client_id: str
    client_secret: str = field(repr=False)

    @classmethod
    def from_sso_url(cls, sso_url: str, client_id: str, client_secret: str) -> "AuthCredentials":
        return cls(build_token_url(sso_url), client_id, client_secret)


@dataclass(frozen=True, slots=True)
class Credential:
    """A bearer token and its validity window."""

    access_token: str = field(repr=False)
    obtained_at: float
    expires_in: float | None = None

    @property
    def expires_at(self) -> float | None:
        if self.expires_in is None:
            return None
        return self.obtained_at + self.expires_in

    def remaining(self, now: float) -> float | None:
        expires_at = self.expires_at
        if expires_at is None:
            return None
        return expires_at - now

    def is_fresh(self, margin: float, now: float) -> bool:
        remaining = self.remaining(now)
        if remaining is None:
            return True
        effective_margin = min(margin, (self.expires_in or 0) / 2)
        return remaining > effective_margin


class _RefreshFlight:
    """One in-flight refresh that followers wait on."""

    def __init__(self) -> None:
        self._done = Event()
        self._credential: Credential | None = None
        self._error: BaseException | None = None

    def resolve(self, credential: Credential) -> None:
        self._credential = credential
        self._done.set()

    def fail(self, error: BaseException) -> None:
        self._error = error
        self._done.set()

    def wait(self) -> Credential:
        self._done.wait()
        if self._error is not None:
            raise self._error
        assert self._credential is not None
        return self._credential


class TokenManager:
    """Issue valid bearer tokens to concurrent callers."""

    def __init__(
        self,
        credentials: AuthCredentials | None,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        refresh_margin: float = 30.0,
        clock: Callable[[], float] = time.time,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.credentials = credentials
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self.logger = logger or structlog.get_logger("trustify_cli.auth")
        self._lock = Lock()
        self._credential: Credential | None = None
        self._flight: _RefreshFlight | None = None
        self.refresh_count = 0

    @property
    def enabled(self) -> bool:
        return self.credentials is not None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    def get_valid_token(self) -> Credential | None:
        """Return a fresh credential, refreshing it first when needed.

        Returns ``None`` in no-auth mode. Raises :class:`AuthError` when the
        refresh fails; nothing is cached in that case.
        """

        if not self.enabled:
            return None
        with self._lock:
            cached = self._credential
            if cached is not None and cached.is_fresh(self.refresh_margin, self._clock()):
                return cached
            if self._flight is None:
                flight = self._flight = _RefreshFlight()
                leader = True
            else:
                flight = self._flight
                leader = False
        if not leader:
            return flight.wait()
        return self._lead_refresh(flight)

    def invalidate(self, stale: Credential | None) -> None:
        """Drop the cached credential if it is still ``stale``."""

        with self._lock:
            if stale is not None and self._credential is stale:
                self._credential = None
                self.logger.debug("token_invalidated")

    # ------------------------------------------------------------------
    def _lead_refresh(self, flight: _RefreshFlight) -> Credential:
        try:
            credential = self._request_token()
        except BaseException as exc:
            with self._lock:
                self._flight = None
            flight.fail(exc)
            self.logger.error("token_refresh_failed", error=str(exc))
            raise
        with self._lock:
            self._credential = credential
            self._flight = None
            self.refresh_count += 1
        flight.resolve(credential)
        self.logger.info("token_refreshed", expires_in=credential.expires_in)
        return credential

    def _request_token(self) -> Credential:
        assert self.credentials is not None
        creds = self.credentials
        try:
            response = self._client.post(
                creds.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                },
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Failed to connect to SSO server: {exc}") from exc

        if response.is_success:
            return self._parse_token(response)
        if response.status_code in (400, 401):
            payload = self._json_or_none(response)
            if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                if payload["error"] in _REJECTED_CLIENT_ERRORS:
                    raise AuthError(
                        "Authentication failed: Invalid client_id, client_secret, "
                        "or SSO URL. Please verify your credentials."
                    )
                message = payload.get("error_description") or payload["error"]
                raise AuthError(f"SSO server returned an error: {message}")
            raise AuthError(
                "Authentication failed: Invalid client_id, client_secret, "
                "or SSO URL. Please verify your credentials."
            )
        raise AuthError(
            f"SSO server returned an error: HTTP {response.status_code}: {response.text}"
        )

    def _parse_token(self, response: httpx.Response) -> Credential:
        payload = self._json_or_none(response)
        if not isinstance(payload, dict):
            raise AuthError("SSO server returned a malformed token response")
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise AuthError("SSO server returned a malformed token response: missing access_token")
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = float(expires_in)
            except (TypeError, ValueError) as exc:
                raise AuthError(
                    f"SSO server returned a malformed token response: expires_in={expires_in!r}"
                ) from exc
        return Credential(access_token=token, obtained_at=self._clock(), expires_in=expires_in)

    @staticmethod
    def _json_or_none(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None


__all__ = ["AuthCredentials", "Credential", "TokenManager", "build_token_url"]
