"""runn-client - bootstrap and lifecycle manager for the runn language server."""

__version__ = "0.1.0"

from .connection import Connection, ConnectionState
from .errors import (
    ConfigError,
    ExecutableNotFound,
    HandshakeError,
    RunnClientError,
    ShutdownTimeout,
    SpawnError,
)
from .host import HeadlessHost, HostContext
from .lifecycle import RunnExtension, activate, deactivate

__all__ = [
    "__version__",
    "Connection",
    "ConnectionState",
    "ConfigError",
    "ExecutableNotFound",
    "HandshakeError",
    "HeadlessHost",
    "HostContext",
    "RunnClientError",
    "RunnExtension",
    "ShutdownTimeout",
    "SpawnError",
    "activate",
    "deactivate",
]
