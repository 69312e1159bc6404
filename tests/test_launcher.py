"""Tests for executable and environment resolution."""

from __future__ import annotations

import dataclasses

import pytest

from runn_client.launcher import (
    DEFAULT_EXECUTABLE,
    DIAGNOSTIC_ENV_KEY,
    DIAGNOSTIC_ENV_VALUE,
    SERVER_PATH_ENV,
    LaunchSpec,
    build_launch_spec,
    derive_environment,
    resolve_executable,
)


@pytest.mark.parametrize(
    "environ, expected",
    [
        ({}, DEFAULT_EXECUTABLE),
        ({SERVER_PATH_ENV: ""}, DEFAULT_EXECUTABLE),
        ({SERVER_PATH_ENV: "/custom/path/server"}, "/custom/path/server"),
        ({SERVER_PATH_ENV: "runn-ls-dev", "PATH": "/bin"}, "runn-ls-dev"),
    ],
)
def test_resolve_executable(environ: dict[str, str], expected: str):
    assert resolve_executable(environ) == expected


def test_default_executable_name():
    assert resolve_executable({}) == "runn-language-server"


def test_derived_environment_adds_diagnostic_key():
    env = derive_environment({"PATH": "/bin", "HOME": "/home/runn"})
    assert env == {"PATH": "/bin", "HOME": "/home/runn", DIAGNOSTIC_ENV_KEY: DIAGNOSTIC_ENV_VALUE}


def test_derived_environment_override_wins():
    env = derive_environment({"RUST_LOG": "warn", "PATH": "/bin"})
    assert env["RUST_LOG"] == "debug"
    assert set(env) == {"RUST_LOG", "PATH"}


def test_derive_environment_does_not_mutate_base():
    base = {"RUST_LOG": "warn"}
    derive_environment(base)
    assert base == {"RUST_LOG": "warn"}


def test_build_launch_spec_from_mapping():
    spec = build_launch_spec({SERVER_PATH_ENV: "/opt/runn/server", "LANG": "C"})
    assert spec.command == "/opt/runn/server"
    assert spec.args == ()
    assert dict(spec.env) == {SERVER_PATH_ENV: "/opt/runn/server", "LANG": "C", "RUST_LOG": "debug"}


def test_build_launch_spec_reads_process_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv(SERVER_PATH_ENV, raising=False)
    monkeypatch.setenv("RUNN_TEST_MARKER", "1")
    spec = build_launch_spec()
    assert spec.command == DEFAULT_EXECUTABLE
    assert spec.env["RUNN_TEST_MARKER"] == "1"
    assert spec.env[DIAGNOSTIC_ENV_KEY] == DIAGNOSTIC_ENV_VALUE


def test_launch_spec_is_immutable():
    spec = LaunchSpec(command="server", env={"A": "1"})
    with pytest.raises(dataclasses.FrozenInstanceError):
        spec.command = "other"  # type: ignore[misc]
    with pytest.raises(TypeError):
        spec.env["A"] = "2"  # type: ignore[index]


def test_launch_spec_copies_env():
    env = {"A": "1"}
    spec = LaunchSpec(command="server", env=env)
    env["A"] = "changed"
    assert spec.env["A"] == "1"
