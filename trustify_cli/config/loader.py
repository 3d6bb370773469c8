"""Configuration loading helpers for trustify-cli."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from ..errors import ConfigError
from .models import Settings

CONFIG_FILENAME = "config.yaml"
HOME_ENV = "TRUSTIFY_CLI_HOME"

# Environment variable -> Settings field
ENV_FIELDS: dict[str, str] = {
    "TRUSTIFY_URL": "url",
    "TRUSTIFY_SSO_URL": "sso_url",
    "TRUSTIFY_CLIENT_ID": "client_id",
    "TRUSTIFY_CLIENT_SECRET": "client_secret",
    "TRUSTIFY_TIMEOUT": "timeout",
    "TRUSTIFY_MAX_ATTEMPTS": "max_attempts",
}


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Configuration file could not be parsed: {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


@dataclass(slots=True)
class ConfigLocator:
    """Resolve the CLI home and log directories."""

    home: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV)
        if env_root:
            root = Path(env_root).expanduser()
        else:
            root = self.home or Path.home() / ".trustify"
        self.home = root.resolve()
        self.logs_dir = (self.home / "logs").resolve()

    def ensure_directories(self) -> None:
        for directory in (self.home, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def config_path(self) -> Path:
        return self.home / CONFIG_FILENAME


class ConfigRepository:
    """Merge config file, ``.env``, environment and CLI overrides into Settings."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()

    def load_settings(
        self,
        overrides: Mapping[str, Any] | None = None,
        config_path: Path | None = None,
        env_file: Path | None = None,
    ) -> Settings:
        payload: dict[str, Any] = {}

        path = config_path or self.locator.config_path()
        if path.exists():
            payload.update(_read_file(path))
        elif config_path is not None:
            raise ConfigError(f"Configuration file not found: {config_path}")

        self._load_dotenv(env_file)
        for env_name, field_name in ENV_FIELDS.items():
            value = os.environ.get(env_name)
            if value not in (None, ""):
                payload[field_name] = value

        for key, value in (overrides or {}).items():
            if value is not None:
                payload[key] = value

        if not payload.get("url"):
            raise ConfigError(
                "Trustify API URL is required (use --url or set TRUSTIFY_URL)"
            )
        try:
            return Settings.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    @staticmethod
    def _load_dotenv(env_file: Path | None) -> None:
        if env_file is not None:
            if not env_file.exists():
                raise ConfigError(f"Env file not found: {env_file}")
            load_dotenv(env_file, override=False)
            return
        found = find_dotenv(usecwd=True)
        if found:
            load_dotenv(found, override=False)


__all__ = ["ConfigLocator", "ConfigRepository", "ENV_FIELDS", "HOME_ENV"]
