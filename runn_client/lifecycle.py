"""
Connection lifecycle manager.

The host calls activate() at startup and deactivate() at shutdown. The
owning RunnExtension object lives on the host context instead of in module
state, and owns at most one Connection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from .config import load_settings
from .connection import Connection, ConnectionState
from .errors import RunnClientError
from .host import HostContext
from .launcher import build_launch_spec
from .models import Disposable
from .scope import build_scope_selector
from .trace import TRACE_CHANNEL_NAME, TraceSink, Tracer
from .transport import CLIENT_NAME, ExecutionMode, RunnLanguageClient, build_server_options

logger = logging.getLogger(__name__)


class RunnExtension:
    """Owns the single connection for one host process."""

    def __init__(
        self,
        client_factory: Callable[[], Any] = RunnLanguageClient,
        settings_overrides: Mapping[str, Any] | None = None,
    ):
        self.client_factory = client_factory
        self.settings_overrides = dict(settings_overrides or {})
        self.connection: Connection | None = None
        self.trace_sink: TraceSink | None = None
        self._context: HostContext | None = None
        self._registrations: list[Disposable] = []
        self._stop_task: asyncio.Task[None] | None = None

    def activate(self, context: HostContext) -> Connection | None:
        """
        Build the connection and start it without waiting.

        Must be called once, from the host's event loop. Failures are
        reported through context.report_error and never raised.

        Returns:
            The started Connection, or None if it could not be built
        """
        self._context = context
        try:
            settings = load_settings(context.workspace_root, self.settings_overrides, context.environ)
        except RunnClientError as e:
            self._report(e)
            return None

        spec = build_launch_spec(context.environ)
        scope = build_scope_selector()
        self.trace_sink = TraceSink(context.create_output_channel(TRACE_CHANNEL_NAME))
        mode = ExecutionMode.DEBUG if context.debug_mode else ExecutionMode.RUN

        connection = Connection(
            build_server_options(spec),
            scope,
            Tracer(self.trace_sink, settings.trace_server),
            settings,
            workspace_root=context.workspace_root,
            mode=mode,
            host=context,
            output=context.create_output_channel(CLIENT_NAME),
            client_factory=self.client_factory,
            error_handler=self._report,
        )
        connection.on_state_change(self._on_state_change)
        self.connection = connection

        connection.start().add_done_callback(self._start_finished)
        return connection

    def deactivate(self) -> asyncio.Task[None] | None:
        """
        Stop the connection.

        Returns None when there is no connection. Otherwise returns the stop
        task; repeated calls return the same task.
        """
        if self._stop_task is not None:
            return self._stop_task
        if self.connection is None:
            return None
        self._stop_task = asyncio.get_running_loop().create_task(self._deactivate(self.connection))
        return self._stop_task

    async def _deactivate(self, connection: Connection) -> None:
        try:
            await connection.stop()
        finally:
            self._dispose_registrations()
            self.connection = None

    def _start_finished(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, RunnClientError):
            self._report(error)
        else:
            logger.error("Language client failed to start", exc_info=error)
            self._report(RunnClientError(f"Language client failed to start: {error}"))

    def _report(self, error: RunnClientError) -> None:
        if self._context is not None:
            self._context.report_error(str(error))

    def _on_state_change(self, state: ConnectionState) -> None:
        if state is ConnectionState.RUNNING:
            self._register()
        elif state is ConnectionState.STOPPED:
            self._dispose_registrations()

    def _register(self) -> None:
        """Route host document and file events to the running connection."""
        context = self._context
        connection = self.connection
        if context is None or connection is None:
            return
        registrations = [
            context.register_document_listener(connection),
            context.create_file_system_watcher(
                connection.scope.watched_file_glob,
                connection.did_change_watched_files,
            ),
        ]
        self._registrations.extend(registrations)
        context.subscriptions.extend(registrations)

    def _dispose_registrations(self) -> None:
        while self._registrations:
            self._registrations.pop().dispose()


def activate(context: HostContext, **kwargs: Any) -> RunnExtension:
    """Host startup hook: create the extension, store it on the context, start it."""
    extension = RunnExtension(**kwargs)
    context.extension = extension
    extension.activate(context)
    return extension


def deactivate(context: HostContext) -> asyncio.Task[None] | None:
    """Host shutdown hook: returns a task to await, or None if nothing is running."""
    if context.extension is None:
        return None
    return context.extension.deactivate()
