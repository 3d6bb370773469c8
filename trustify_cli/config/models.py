"""Pydantic models describing client configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, field_validator

from ..engine.auth import AuthCredentials


class Settings(BaseModel):
    """Connection, retry and workflow defaults for one CLI invocation."""

    url: str
    sso_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    timeout: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=1.0, ge=0)
    retry_backoff_max: float = Field(default=30.0, ge=0)
    token_refresh_margin: float = Field(default=30.0, ge=0)
    batch_size: int = Field(default=100, ge=1)
    find_concurrency: int = Field(default=4, ge=1)
    delete_concurrency: int = Field(default=8, ge=1)
    report_path: Path = Field(default=Path("duplicates.json"))

    @field_validator("url")
    @classmethod
    def _normalise_url(cls, value: str) -> str:
        text = value.strip()
        if not text.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return text.rstrip("/")

    @field_validator("sso_url", "client_id", "client_secret", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("report_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        if not isinstance(value, (str, Path)):
            raise ValueError("report_path must be a file path")
        return Path(value)

    @property
    def has_auth(self) -> bool:
        return bool(self.sso_url and self.client_id and self.client_secret)

    def auth_credentials(self) -> AuthCredentials | None:
        """Return grant credentials when all three auth settings are present."""

        if self.has_auth:
            return AuthCredentials.from_sso_url(
                self.sso_url,  # type: ignore[arg-type]
                self.client_id,  # type: ignore[arg-type]
                self.client_secret,  # type: ignore[arg-type]
            )
        if self.sso_url or self.client_id or self.client_secret:
            structlog.get_logger("trustify_cli.config").warning(
                "partial_auth_config",
                sso_url=bool(self.sso_url),
                client_id=bool(self.client_id),
                client_secret=bool(self.client_secret),
            )
        return None


__all__ = ["Settings"]
