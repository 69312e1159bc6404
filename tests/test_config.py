"""Tests for client settings resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from runn_client.config import (
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    SETTINGS_FILENAME,
    ClientSettings,
    load_settings,
)
from runn_client.errors import ConfigError
from runn_client.trace import TraceLevel


def _write_settings(root: Path, body: str) -> None:
    (root / SETTINGS_FILENAME).write_text(body, encoding="utf-8")


def test_defaults(workspace: Path):
    settings = load_settings(workspace, environ={})
    assert settings == ClientSettings()
    assert settings.trace_server is TraceLevel.OFF
    assert settings.shutdown_timeout == DEFAULT_SHUTDOWN_TIMEOUT
    assert settings.handshake_timeout == DEFAULT_HANDSHAKE_TIMEOUT


def test_settings_file(workspace: Path):
    _write_settings(
        workspace,
        '[runn-client]\ntrace-server = "verbose"\nshutdown-timeout = 2.5\n',
    )
    settings = load_settings(workspace, environ={})
    assert settings.trace_server is TraceLevel.VERBOSE
    assert settings.shutdown_timeout == 2.5


def test_settings_file_without_table(workspace: Path):
    _write_settings(workspace, '[tool.other]\nkey = "value"\n')
    assert load_settings(workspace, environ={}) == ClientSettings()


def test_environment_overrides_file(workspace: Path):
    _write_settings(workspace, '[runn-client]\ntrace_server = "verbose"\n')
    settings = load_settings(
        workspace,
        environ={"RUNN_CLIENT_TRACE": "messages", "RUNN_CLIENT_SHUTDOWN_TIMEOUT": "1"},
    )
    assert settings.trace_server is TraceLevel.MESSAGES
    assert settings.shutdown_timeout == 1.0


def test_explicit_overrides_win(workspace: Path):
    settings = load_settings(
        workspace,
        overrides={"trace_server": "verbose", "shutdown_timeout": None},
        environ={"RUNN_CLIENT_TRACE": "messages"},
    )
    assert settings.trace_server is TraceLevel.VERBOSE
    assert settings.shutdown_timeout == DEFAULT_SHUTDOWN_TIMEOUT


def test_no_workspace():
    assert load_settings(None, environ={}) == ClientSettings()


@pytest.mark.parametrize(
    "data, message",
    [
        ({"trace_server": "loud"}, "Invalid trace_server"),
        ({"shutdown_timeout": -1}, "must be positive"),
        ({"shutdown_timeout": "inf"}, "must be positive and finite"),
        ({"shutdown_timeout": float("inf")}, "must be positive and finite"),
        ({"handshake_timeout": "nan"}, "must be positive and finite"),
        ({"handshake_timeout": "soon"}, "Invalid handshake_timeout"),
        ({"colour": "blue"}, "Unknown setting"),
    ],
)
def test_invalid_values(data: dict, message: str):
    with pytest.raises(ConfigError, match=message):
        ClientSettings.from_mapping(data)


def test_malformed_settings_file(workspace: Path):
    _write_settings(workspace, "[runn-client\n")
    with pytest.raises(ConfigError, match=SETTINGS_FILENAME):
        load_settings(workspace, environ={})


def test_unbounded_shutdown_from_environment(workspace: Path):
    with pytest.raises(ConfigError, match="shutdown_timeout must be positive and finite"):
        load_settings(workspace, environ={"RUNN_CLIENT_SHUTDOWN_TIMEOUT": "inf"})


def test_unbounded_shutdown_from_file(workspace: Path):
    _write_settings(workspace, "[runn-client]\nshutdown_timeout = inf\n")
    with pytest.raises(ConfigError, match="shutdown_timeout"):
        load_settings(workspace, environ={})


def test_settings_constructed_directly_are_bounded():
    with pytest.raises(ConfigError, match="handshake_timeout"):
        ClientSettings(handshake_timeout=float("nan"))
