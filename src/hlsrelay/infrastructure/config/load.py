"""Layered configuration loading.

Each source produces a *layer*: a mapping in either the sectioned shape
(``{"upstream": {"timeout_seconds": 5}}``) or the flat shape used by env
vars and CLI flags (``{"upstream_timeout_seconds": 5}``).  Layers are
folded onto the defaults in order, later ones winning, and the result is
validated once by :class:`AppConfig`.
"""

from __future__ import annotations

from collections.abc import Iterator
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from .defaults import DEFAULT_CONFIG
from .schema import AppConfig, EnvOverrides

_TOP_LEVEL_KEYS = ("app_name", "environment")

# Flat name -> "section.key"
_FLAT_PATHS: dict[str, str] = {
    "public_url": "proxy.public_url",
    "cors_allowed_origins": "proxy.cors_allowed_origins",
    "playlist_cache_seconds": "proxy.playlist_cache_seconds",
    "client_ip_header": "proxy.client_ip_header",
    "rate_limit_window_seconds": "rate_limit.window_seconds",
    "rate_limit_max_requests": "rate_limit.max_requests",
    "rate_limit_max_clients": "rate_limit.max_clients",
    "rate_limit_peer_fallback": "rate_limit.peer_fallback",
    "resolve_hostnames": "security.resolve_hostnames",
    "upstream_timeout_seconds": "upstream.timeout_seconds",
    "upstream_user_agent": "upstream.user_agent",
    "upstream_follow_redirects": "upstream.follow_redirects",
    "upstream_max_concurrency": "upstream.max_concurrency",
    "max_playlist_bytes": "upstream.max_playlist_bytes",
    "log_level": "logging.level",
    "log_format": "logging.format",
}

_SECTIONS = frozenset(path.partition(".")[0] for path in _FLAT_PATHS.values())


def _sectioned(layer: Mapping[str, Any]) -> dict[str, Any]:
    """Bring *layer* into the sectioned shape; unknown keys are dropped."""
    out: dict[str, Any] = {
        key: layer[key] for key in _TOP_LEVEL_KEYS if key in layer
    }
    for section in _SECTIONS:
        block = layer.get(section)
        if isinstance(block, Mapping):
            out[section] = dict(block)
    for flat, path in _FLAT_PATHS.items():
        if flat in layer:
            section, _, key = path.partition(".")
            out.setdefault(section, {})[key] = layer[flat]
    return out


def _fold(target: dict[str, Any], layer: Mapping[str, Any]) -> None:
    # Nested mappings merge key by key; anything else (lists included) replaces.
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _fold(current, value)
        else:
            target[key] = value


def _require_file(path: Path) -> Path:
    if not path.exists():
        raise FileNotFoundError(path)
    return path


def _file_layer(path: Path) -> dict[str, Any]:
    parsed = yaml.safe_load(_require_file(path).read_text(encoding="utf-8"))
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError(f"Config YAML must be a mapping, got: {type(parsed)!r}")
    return parsed


def _env_layer(dotenv_path: Path | None) -> dict[str, Any]:
    # A .env file only fills variables the process environment lacks.
    if dotenv_path is not None:
        load_dotenv(_require_file(dotenv_path), override=False)
    return EnvOverrides().to_update_dict()


def _layers(
    config_path: Path | None,
    dotenv_path: Path | None,
    cli_overrides: Mapping[str, Any],
) -> Iterator[Mapping[str, Any]]:
    yield deepcopy(DEFAULT_CONFIG)
    if config_path is not None:
        yield _file_layer(config_path)
    yield _env_layer(dotenv_path)
    yield cli_overrides


def load_config(
    *,
    config_path: Path | None = None,
    dotenv_path: Path | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Build the effective :class:`AppConfig`.

    Precedence, lowest first: defaults, YAML file, environment (including
    *dotenv_path*), *cli_overrides*.  Never writes to the filesystem.

    Raises:
        FileNotFoundError: *config_path* or *dotenv_path* does not exist.
        ValueError: the YAML document is not a mapping.
        pydantic.ValidationError: the merged values are invalid.
    """
    merged: dict[str, Any] = {}
    for layer in _layers(config_path, dotenv_path, cli_overrides or {}):
        _fold(merged, _sectioned(layer))
    return AppConfig.model_validate(merged)
