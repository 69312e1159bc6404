"""Run command - connect a headless host to the language server."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from ..connection import ConnectionState
from ..host import HeadlessHost
from ..launcher import (
    DEFAULT_EXECUTABLE,
    DIAGNOSTIC_ENV_KEY,
    SERVER_PATH_ENV,
    build_launch_spec,
)
from ..lifecycle import activate, deactivate
from ..scope import build_scope_selector
from ..transport import build_server_options


def run_client(
    workspace: Path,
    *,
    trace: str | None = None,
    debug: bool = False,
    shutdown_timeout: float | None = None,
    open_files: list[Path] | None = None,
    duration: float | None = None,
) -> int:
    """
    Connect to the language server and stay connected until interrupted.

    This is a blocking command that runs until Ctrl+C, SIGTERM, the server
    exiting, or `duration` seconds passing.

    Returns the process exit code.
    """
    console = Console(stderr=True)
    host = HeadlessHost(workspace.resolve(), debug_mode=debug, console=console)
    overrides: dict[str, Any] = {"trace_server": trace, "shutdown_timeout": shutdown_timeout}
    return asyncio.run(_session(host, overrides, open_files or [], duration))


async def _session(
    host: HeadlessHost,
    overrides: dict[str, Any],
    open_files: list[Path],
    duration: float | None,
) -> int:
    console = host.console
    loop = asyncio.get_running_loop()
    done = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, done.set)
        except (NotImplementedError, RuntimeError):
            # no signal handlers on this platform's loop
            pass

    extension = activate(host, settings_overrides=overrides)
    connection = extension.connection
    if connection is None:
        return 1

    def on_state(state: ConnectionState) -> None:
        if state is ConnectionState.STOPPED:
            done.set()

    connection.on_state_change(on_state)

    for path in open_files:
        host.open_document(path)

    console.print(f"[bold]Connecting[/bold] to {connection.server_options.for_mode(connection.mode).command}")
    if await connection.wait_ready():
        console.print(f"  Workspace: {host.workspace_root}")
        console.print(f"  Trace: {connection.tracer.level.value}")
        console.print()
        console.print("[dim]Press Ctrl+C to disconnect[/dim]")
        try:
            await asyncio.wait_for(done.wait(), duration)
        except asyncio.TimeoutError:
            pass

    stopping = deactivate(host)
    if stopping is not None:
        await stopping
    host.dispose_subscriptions()

    console.print()
    console.print(f"[bold]Stopped.[/bold] {len(host.errors)} error(s) reported.")
    return 1 if host.errors else 0


def run_launch_spec() -> int:
    """Print the resolved launch configurations."""
    console = Console()
    spec = build_launch_spec()
    options = build_server_options(spec)
    scope = build_scope_selector()

    table = Table(title="runn language server launch")
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    source = f"${SERVER_PATH_ENV}" if spec.command != DEFAULT_EXECUTABLE else "default"
    table.add_row("Executable", f"{spec.command} ({source})")
    table.add_row("Arguments", " ".join(spec.args) or "(none)")
    table.add_row("Environment", f"{DIAGNOSTIC_ENV_KEY}={spec.env[DIAGNOSTIC_ENV_KEY]}")
    table.add_row("Debug launch", "same as run" if options.debug == options.run else options.debug.describe())
    for f in scope.document_filters:
        table.add_row("Documents", f"scheme={f.scheme} language={f.language}")
    table.add_row("Watched files", scope.watched_file_glob)

    console.print(table)
    return 0
