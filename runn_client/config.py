"""
Client settings.

Settings come from three layers, later ones winning:
- ``[runn-client]`` table of ``runn-client.toml`` in the workspace root
- environment variables (RUNN_CLIENT_TRACE, RUNN_CLIENT_SHUTDOWN_TIMEOUT)
- explicit overrides (CLI flags)
"""

from __future__ import annotations

import math
import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError
from .trace import TraceLevel

SETTINGS_FILENAME = "runn-client.toml"
SETTINGS_TABLE = "runn-client"

ENV_TRACE = "RUNN_CLIENT_TRACE"
ENV_SHUTDOWN_TIMEOUT = "RUNN_CLIENT_SHUTDOWN_TIMEOUT"

DEFAULT_SHUTDOWN_TIMEOUT = 5.0
DEFAULT_HANDSHAKE_TIMEOUT = 30.0


@dataclass(frozen=True)
class ClientSettings:
    trace_server: TraceLevel = TraceLevel.OFF
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT

    def __post_init__(self) -> None:
        _check_timeout("shutdown_timeout", self.shutdown_timeout)
        _check_timeout("handshake_timeout", self.handshake_timeout)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base: "ClientSettings | None" = None) -> "ClientSettings":
        """Apply recognised keys (dashes or underscores) on top of base."""
        base = base or cls()
        known = {f.name for f in fields(cls)}
        changes: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = raw_key.replace("-", "_")
            if key not in known:
                raise ConfigError(f"Unknown setting: {raw_key}")
            if value is None:
                continue
            changes[key] = _coerce(key, value)
        return replace(base, **changes)


def _coerce(key: str, value: Any) -> Any:
    if key == "trace_server":
        try:
            return TraceLevel(str(value).lower())
        except ValueError:
            choices = ", ".join(level.value for level in TraceLevel)
            raise ConfigError(f"Invalid trace_server {value!r} (expected one of: {choices})") from None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {key}: {value!r}") from None
    _check_timeout(key, number)
    return number


def _check_timeout(key: str, number: float) -> None:
    if not math.isfinite(number) or number <= 0:
        raise ConfigError(f"{key} must be positive and finite, got {number!r}")


def _read_settings_file(path: Path) -> dict[str, Any]:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e
    table = data.get(SETTINGS_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigError(f"{path}: [{SETTINGS_TABLE}] must be a table")
    return table


def load_settings(
    workspace_root: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ClientSettings:
    """
    Resolve client settings.

    Args:
        workspace_root: Directory searched for runn-client.toml
        overrides: Explicit values (None values are ignored)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Resolved ClientSettings

    Raises:
        ConfigError: Unknown key, malformed TOML, or invalid value
    """
    if environ is None:
        environ = os.environ

    settings = ClientSettings()
    if workspace_root is not None:
        path = workspace_root / SETTINGS_FILENAME
        if path.is_file():
            settings = ClientSettings.from_mapping(_read_settings_file(path), settings)

    from_env: dict[str, Any] = {}
    if environ.get(ENV_TRACE):
        from_env["trace_server"] = environ[ENV_TRACE]
    if environ.get(ENV_SHUTDOWN_TIMEOUT):
        from_env["shutdown_timeout"] = environ[ENV_SHUTDOWN_TIMEOUT]
    settings = ClientSettings.from_mapping(from_env, settings)

    if overrides:
        settings = ClientSettings.from_mapping(overrides, settings)
    return settings
