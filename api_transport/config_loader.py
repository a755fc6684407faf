"""Loads transport configuration from YAML.

Strings may reference environment variables as ``${NAME}`` or
``${NAME:-fallback}``. Every unresolved reference is reported in one error,
with the key path where it occurs. The base URL and proxy are checked to be
absolute URLs before the config is handed to a client.

Example:

    base_url: https://api.example.com/v1
    timeout_seconds: 30
    proxy: ${HTTPS_PROXY:-}
    retry:
      max_retries: 5
      delay_seconds: 1
    uri_replacement:
      replacement_pairs:
        /users/me-token-to-replace: /me
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import ValidationError

from api_transport.models import TransportConfig


class ConfigError(Exception):
    """Raised when configuration loading fails."""


_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")

BASE_URL_SCHEMES = frozenset({"http", "https"})
PROXY_SCHEMES = frozenset({"http", "https", "socks5", "socks5h"})


def load_transport_config(config_path: Path | str) -> TransportConfig:
    """Read, expand and validate a transport config file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Config file must be a YAML mapping")

    missing: list[str] = []
    expanded = _expand(raw, "", missing)
    if missing:
        raise ConfigError("Environment variables not set: " + ", ".join(missing))

    try:
        config = TransportConfig.model_validate(expanded)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e

    _check_url("base_url", config.base_url, BASE_URL_SCHEMES)
    _check_url("proxy", config.proxy, PROXY_SCHEMES)
    return config


def _expand(node: Any, path: str, missing: list[str]) -> Any:
    if isinstance(node, str):
        return _ENV_REFERENCE.sub(lambda m: _lookup(m, path, missing), node)
    if isinstance(node, dict):
        return {key: _expand(value, f"{path}.{key}" if path else str(key), missing)
                for key, value in node.items()}
    if isinstance(node, list):
        return [_expand(item, f"{path}[{i}]", missing) for i, item in enumerate(node)]
    return node


def _lookup(match: re.Match[str], path: str, missing: list[str]) -> str:
    value = os.environ.get(match["name"])
    if value is not None:
        return value
    if match["fallback"] is not None:
        return match["fallback"]
    missing.append(f"{match['name']} (at {path})")
    return ""


def _check_url(field: str, value: str | None, schemes: frozenset[str]) -> None:
    # An empty string comes from a ${VAR:-} fallback and means "not set"
    if not value:
        return
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as e:
        raise ConfigError(f"Invalid {field} {value!r}: {e}") from e
    if url.scheme not in schemes or not url.host:
        raise ConfigError(
            f"Invalid {field} {value!r}: expected an absolute "
            f"{'/'.join(sorted(schemes))} URL"
        )
