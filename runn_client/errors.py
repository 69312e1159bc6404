"""Exceptions raised by the runn language client."""

from __future__ import annotations


class RunnClientError(RuntimeError):
    """Base class for connection lifecycle failures."""


class SpawnError(RunnClientError):
    """The server process could not be launched."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"Failed to launch {command!r}: {reason}")
        self.command = command
        self.reason = reason


class ExecutableNotFound(SpawnError):
    """The server executable does not exist on PATH or at the given path."""


class HandshakeError(RunnClientError):
    """The process started but the initialize handshake did not complete."""


class ShutdownTimeout(RunnClientError):
    """The stop sequence did not finish within the configured bound."""

    def __init__(self, timeout: float):
        super().__init__(f"Language server did not stop within {timeout:g}s; process killed")
        self.timeout = timeout


class ConfigError(RunnClientError):
    """Invalid client settings."""
