"""
Launch specification for the runn language server.

The launcher never spawns anything. It resolves which executable to run and
the environment it runs under, and hands the result to the transport.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

SERVER_PATH_ENV = "SERVER_PATH"
DEFAULT_EXECUTABLE = "runn-language-server"

# Forced on every launch, whatever the host already set.
DIAGNOSTIC_ENV_KEY = "RUST_LOG"
DIAGNOSTIC_ENV_VALUE = "debug"
ENV_OVERRIDES: Mapping[str, str] = MappingProxyType({DIAGNOSTIC_ENV_KEY: DIAGNOSTIC_ENV_VALUE})


@dataclass(frozen=True)
class LaunchSpec:
    """Executable plus environment for one server launch."""

    command: str
    env: Mapping[str, str] = field(default_factory=dict)
    args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


def resolve_executable(environ: Mapping[str, str]) -> str:
    """Return the SERVER_PATH override when set and non-empty, else the default name."""
    override = environ.get(SERVER_PATH_ENV)
    if override:
        return override
    return DEFAULT_EXECUTABLE


def derive_environment(
    environ: Mapping[str, str],
    overrides: Mapping[str, str] = ENV_OVERRIDES,
) -> dict[str, str]:
    """Copy the base environment, then apply the fixed override set."""
    env = dict(environ)
    env.update(overrides)
    return env


def build_launch_spec(environ: Mapping[str, str] | None = None) -> LaunchSpec:
    """
    Build the launch specification from the host environment.

    Args:
        environ: Host environment (defaults to os.environ, read once here)

    Returns:
        Immutable LaunchSpec. A missing executable is only detected at spawn time.
    """
    if environ is None:
        environ = os.environ
    return LaunchSpec(
        command=resolve_executable(environ),
        env=derive_environment(environ),
    )
