"""
Transport binding between the client and the server process.

This module provides:
- RunnLanguageClient, the pygls client speaking LSP over the process stdio
- Two named launch configurations ("run" and "debug")
- spawn(), which starts the process and maps launch failures to SpawnError

Restart policy does not live here: a failed spawn is raised, never retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pygls.lsp.client import LanguageClient

from . import __version__
from .errors import ExecutableNotFound, SpawnError
from .launcher import LaunchSpec

logger = logging.getLogger(__name__)

CLIENT_ID = "runn-language-server"
CLIENT_NAME = "runn Language Server"
CLIENT_VERSION = __version__


class ExecutionMode(str, Enum):
    """Which launch configuration to use."""

    RUN = "run"
    DEBUG = "debug"


@dataclass(frozen=True)
class ServerOptions:
    """The run and debug launch configurations."""

    run: LaunchSpec
    debug: LaunchSpec

    def for_mode(self, mode: ExecutionMode) -> LaunchSpec:
        if mode is ExecutionMode.DEBUG:
            return self.debug
        return self.run


def _launch_configuration(spec: LaunchSpec) -> LaunchSpec:
    # Debug flags (extra tracing, wait-for-attach) would diverge here.
    return LaunchSpec(command=spec.command, env=spec.env, args=spec.args)


def build_server_options(spec: LaunchSpec) -> ServerOptions:
    """Build both launch configurations from one LaunchSpec."""
    return ServerOptions(run=_launch_configuration(spec), debug=_launch_configuration(spec))


class RunnLanguageClient(LanguageClient):
    """pygls client that exposes its server process and exit notifications."""

    def __init__(self, name: str = CLIENT_ID, version: str = CLIENT_VERSION):
        super().__init__(name, version)
        self._exit_callbacks: list[Callable[[int | None], None]] = []

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        """The spawned server process, if any."""
        return getattr(self, "_server", None)

    def add_exit_callback(self, callback: Callable[[int | None], None]) -> None:
        self._exit_callbacks.append(callback)

    async def server_exit(self, server: asyncio.subprocess.Process) -> None:
        logger.debug("Server process %s exited with code %s", server.pid, server.returncode)
        for callback in list(self._exit_callbacks):
            callback(server.returncode)

    def report_server_error(self, error: Exception, source: Any) -> None:
        logger.error("Language server channel error (%s): %s", getattr(source, "__name__", source), error)


async def spawn(client: Any, spec: LaunchSpec) -> None:
    """
    Start the server process and bind the client to its stdin/stdout.

    Args:
        client: Protocol client with a pygls-style start_io()
        spec: Launch configuration to use

    Raises:
        ExecutableNotFound: The executable does not exist
        SpawnError: The executable exists but could not be started
    """
    logger.info("Starting language server: %s", spec.describe())
    try:
        await client.start_io(spec.command, *spec.args, env=dict(spec.env))
    except FileNotFoundError as e:
        raise ExecutableNotFound(spec.command, e.strerror or str(e)) from e
    except OSError as e:
        raise SpawnError(spec.command, e.strerror or str(e)) from e
