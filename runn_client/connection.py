"""
The connection to the runn language server.

This module provides:
- ConnectionState, the lifecycle of a single connection
- Connection, which spawns the server, runs the initialize handshake,
  forwards document and watched-file events, and stops the server with a
  bounded shutdown sequence

State machine:

    UNSTARTED --start()--> STARTING --handshake ok--> RUNNING
    STARTING --spawn/handshake fails--> STOPPED
    RUNNING --stop()--> STOPPING --shutdown/exit--> STOPPED

A stop requested during the handshake waits for the handshake to settle and
then proceeds. Nothing is restarted automatically.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from lsprotocol import types as lsp

from .config import ClientSettings
from .errors import HandshakeError, RunnClientError, ShutdownTimeout, SpawnError
from .models import Disposable, FileChange, TextDocument
from .scope import ScopeSelector
from .trace import Tracer
from .transport import ExecutionMode, RunnLanguageClient, ServerOptions, spawn

if TYPE_CHECKING:
    from .host import HostContext, OutputChannel

logger = logging.getLogger(__name__)

# Time allowed for the transport to close after shutdown or a kill
KILL_GRACE_SECONDS = 1.0

_LOG_LEVELS = {
    lsp.MessageType.Error: logging.ERROR,
    lsp.MessageType.Warning: logging.WARNING,
    lsp.MessageType.Info: logging.INFO,
    lsp.MessageType.Log: logging.DEBUG,
}


class ConnectionState(str, Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


def client_capabilities() -> lsp.ClientCapabilities:
    """Capabilities advertised in the initialize request."""
    return lsp.ClientCapabilities(
        workspace=lsp.WorkspaceClientCapabilities(
            did_change_watched_files=lsp.DidChangeWatchedFilesClientCapabilities(
                dynamic_registration=False,
            ),
            workspace_folders=True,
        ),
        text_document=lsp.TextDocumentClientCapabilities(
            synchronization=lsp.TextDocumentSyncClientCapabilities(did_save=True),
            publish_diagnostics=lsp.PublishDiagnosticsClientCapabilities(),
        ),
    )


class Connection:
    """A single client connection to the language server process."""

    def __init__(
        self,
        server_options: ServerOptions,
        scope: ScopeSelector,
        tracer: Tracer,
        settings: ClientSettings | None = None,
        *,
        workspace_root: Path | None = None,
        mode: ExecutionMode = ExecutionMode.RUN,
        host: "HostContext | None" = None,
        output: "OutputChannel | None" = None,
        client_factory: Callable[[], Any] = RunnLanguageClient,
        error_handler: Callable[[RunnClientError], None] | None = None,
    ):
        self.server_options = server_options
        self.scope = scope
        self.tracer = tracer
        self.settings = settings or ClientSettings()
        self.workspace_root = workspace_root
        self.mode = mode
        self.host = host
        self.output = output
        self.error_handler = error_handler

        self.server_capabilities: lsp.ServerCapabilities | None = None
        self.diagnostics: dict[str, list[lsp.Diagnostic]] = {}
        self.returncode: int | None = None

        self._state = ConnectionState.UNSTARTED
        self._listeners: list[Callable[[ConnectionState], None]] = []
        self._start_task: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Future[None] | None = None
        self._process_exited = asyncio.Event()
        self._spawned = False
        self._transport_closed = False
        self._ids = itertools.count(1)

        self._client = client_factory()
        self._client.add_exit_callback(self._on_server_exit)
        self._register_handlers()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def client(self) -> Any:
        return self._client

    @property
    def is_running(self) -> bool:
        return self._state is ConnectionState.RUNNING

    def on_state_change(self, callback: Callable[[ConnectionState], None]) -> Disposable:
        """Subscribe to state transitions."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Disposable(unsubscribe)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("Connection %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _report(self, error: RunnClientError) -> None:
        logger.error("%s", error)
        if self.error_handler is not None:
            self.error_handler(error)

    # -------------------------------------------------------------------------
    # Protocol plumbing
    # -------------------------------------------------------------------------

    async def _request(self, method: str, params: Any, send: Callable[[Any], Awaitable[Any]]) -> Any:
        request_id = next(self._ids)
        started = self.tracer.request_sent(method, request_id, params)
        try:
            result = await send(params)
        except Exception as e:
            self.tracer.request_failed(method, request_id, started, e)
            raise
        self.tracer.response_received(method, request_id, started, result)
        return result

    def _notify(self, method: str, params: Any, send: Callable[[Any], None]) -> None:
        self.tracer.notification_sent(method, params)
        send(params)

    def _register_handlers(self) -> None:
        client = self._client

        @client.feature(lsp.WINDOW_LOG_MESSAGE)
        def log_message(params: lsp.LogMessageParams) -> None:
            self.tracer.notification_received(lsp.WINDOW_LOG_MESSAGE, params)
            level = _LOG_LEVELS.get(params.type, logging.INFO)
            logger.log(level, "server: %s", params.message)
            if self.output is not None:
                kind = lsp.MessageType(params.type).name
                stamp = datetime.now().strftime("%H:%M:%S")
                self.output.append_line(f"[{kind:<7} - {stamp}] {params.message}")

        @client.feature(lsp.WINDOW_SHOW_MESSAGE)
        def show_message(params: lsp.ShowMessageParams) -> None:
            self.tracer.notification_received(lsp.WINDOW_SHOW_MESSAGE, params)
            if self.host is not None:
                self.host.show_message(params.type, params.message)

        @client.feature(lsp.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS)
        def publish_diagnostics(params: lsp.PublishDiagnosticsParams) -> None:
            self.tracer.notification_received(lsp.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, params)
            self.diagnostics[params.uri] = list(params.diagnostics)
            if self.host is not None:
                self.host.publish_diagnostics(params.uri, list(params.diagnostics))

        @client.feature(lsp.LOG_TRACE)
        def log_trace(params: lsp.LogTraceParams) -> None:
            self.tracer.server_trace(params.message, params.verbose)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        """
        Begin spawn + handshake without waiting for it.

        Must be called from the host's event loop. The returned task raises
        SpawnError or HandshakeError if the connection could not be set up;
        in both cases the state is STOPPED afterwards.
        """
        if self._start_task is None:
            self._start_task = asyncio.get_running_loop().create_task(self._start())
        return self._start_task

    def _initialize_params(self) -> lsp.InitializeParams:
        root_uri = None
        root_path = None
        folders = None
        if self.workspace_root is not None:
            root = self.workspace_root.resolve()
            root_uri = root.as_uri()
            root_path = str(root)
            folders = [lsp.WorkspaceFolder(uri=root_uri, name=root.name)]
        return lsp.InitializeParams(
            process_id=os.getpid(),
            root_uri=root_uri,
            root_path=root_path,
            workspace_folders=folders,
            capabilities=client_capabilities(),
        )

    async def _start(self) -> None:
        self._set_state(ConnectionState.STARTING)
        spec = self.server_options.for_mode(self.mode)
        try:
            await spawn(self._client, spec)
        except SpawnError:
            self._set_state(ConnectionState.STOPPED)
            raise
        self._spawned = True

        try:
            result = await asyncio.wait_for(self._initialize(), self.settings.handshake_timeout)
            self._notify(lsp.INITIALIZED, lsp.InitializedParams(), self._client.initialized)
        except Exception as e:
            await self._terminate()
            self._set_state(ConnectionState.STOPPED)
            reason = str(e) or type(e).__name__
            raise HandshakeError(f"Initialize handshake with {spec.command!r} failed: {reason}") from e

        self.server_capabilities = getattr(result, "capabilities", None)
        self._set_state(ConnectionState.RUNNING)
        logger.info("Language server running (%s)", spec.describe())

    async def _initialize(self) -> Any:
        """Send initialize, failing early if the process exits first."""
        request = asyncio.ensure_future(
            self._request(lsp.INITIALIZE, self._initialize_params(), self._client.initialize_async)
        )
        exited = asyncio.ensure_future(self._process_exited.wait())
        try:
            await asyncio.wait({request, exited}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (request, exited):
                if not task.done():
                    task.cancel()
        if not request.done() or request.cancelled():
            raise HandshakeError(f"server exited during initialize (code {self.returncode})")
        return request.result()

    async def wait_ready(self) -> bool:
        """Wait for the handshake to settle; True if the connection is running."""
        if self._start_task is not None:
            await asyncio.wait({self._start_task})
        return self.is_running

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    async def stop(self) -> None:
        """
        Stop the connection.

        Idempotent: concurrent and repeated calls share one stop sequence,
        and stopping a connection that never started touches no process.
        The sequence is bounded by settings.shutdown_timeout; on expiry the
        process is killed and ShutdownTimeout is reported, not raised.
        """
        if self._stop_task is None:
            if self._start_task is None:
                self._set_state(ConnectionState.STOPPED)
                return
            self._stop_task = asyncio.ensure_future(self._stop())
        await asyncio.shield(self._stop_task)

    async def _stop(self) -> None:
        timeout = self.settings.shutdown_timeout
        try:
            await asyncio.wait_for(self._shutdown(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Language server did not stop within %ss; killing it", timeout)
            if self._start_task is not None and not self._start_task.done():
                self._start_task.cancel()
            self._kill()
            await self._terminate()
            self._report(ShutdownTimeout(timeout))
        finally:
            self._set_state(ConnectionState.STOPPED)

    async def _shutdown(self) -> None:
        if self._start_task is not None and not self._start_task.done():
            logger.debug("Stop requested during handshake; waiting for it to settle")
            await asyncio.wait({self._start_task})
        if self._state is not ConnectionState.RUNNING:
            # transport still open after the server exited on its own
            if self._spawned and not self._transport_closed:
                await self._terminate()
            return

        self._set_state(ConnectionState.STOPPING)
        try:
            await self._request(lsp.SHUTDOWN, None, self._client.shutdown_async)
            self._notify(lsp.EXIT, None, self._client.exit)
        except Exception as e:
            logger.warning("Graceful shutdown failed: %s", e)
        await self._terminate()

    async def _terminate(self) -> None:
        """Close the client transport, killing the process if it lingers."""
        self._transport_closed = True
        try:
            await asyncio.wait_for(self._client.stop(), KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Client transport did not close within %ss", KILL_GRACE_SECONDS)
        except ProcessLookupError:
            # already gone
            pass
        self._kill()

    def _kill(self) -> None:
        process = getattr(self._client, "process", None)
        if process is None or process.returncode is not None:
            return
        logger.debug("Killing server process %s", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def _on_server_exit(self, returncode: int | None) -> None:
        self.returncode = returncode
        self._process_exited.set()
        if self._state is ConnectionState.RUNNING:
            self._set_state(ConnectionState.STOPPED)
            self._report(RunnClientError(f"Language server exited unexpectedly (code {returncode})"))

    # -------------------------------------------------------------------------
    # Forwarding
    # -------------------------------------------------------------------------

    def _accepts(self, document: TextDocument) -> bool:
        if not self.is_running:
            logger.debug("Not forwarding %s: connection is %s", document.uri, self._state.value)
            return False
        return self.scope.matches(document)

    def did_open(self, document: TextDocument) -> bool:
        if not self._accepts(document):
            return False
        params = lsp.DidOpenTextDocumentParams(
            text_document=lsp.TextDocumentItem(
                uri=document.uri,
                language_id=document.language_id,
                version=document.version,
                text=document.text,
            )
        )
        self._notify(lsp.TEXT_DOCUMENT_DID_OPEN, params, self._client.text_document_did_open)
        return True

    def did_change(self, document: TextDocument) -> bool:
        if not self._accepts(document):
            return False
        params = lsp.DidChangeTextDocumentParams(
            text_document=lsp.VersionedTextDocumentIdentifier(uri=document.uri, version=document.version),
            content_changes=[lsp.TextDocumentContentChangeWholeDocument(text=document.text)],
        )
        self._notify(lsp.TEXT_DOCUMENT_DID_CHANGE, params, self._client.text_document_did_change)
        return True

    def did_save(self, document: TextDocument) -> bool:
        if not self._accepts(document):
            return False
        params = lsp.DidSaveTextDocumentParams(text_document=lsp.TextDocumentIdentifier(uri=document.uri))
        self._notify(lsp.TEXT_DOCUMENT_DID_SAVE, params, self._client.text_document_did_save)
        return True

    def did_close(self, document: TextDocument) -> bool:
        if not self._accepts(document):
            return False
        params = lsp.DidCloseTextDocumentParams(text_document=lsp.TextDocumentIdentifier(uri=document.uri))
        self._notify(lsp.TEXT_DOCUMENT_DID_CLOSE, params, self._client.text_document_did_close)
        self.diagnostics.pop(document.uri, None)
        return True

    def did_change_watched_files(self, changes: Iterable[FileChange]) -> bool:
        events = [change.to_lsp() for change in changes]
        if not events or not self.is_running:
            return False
        params = lsp.DidChangeWatchedFilesParams(changes=events)
        self._notify(
            lsp.WORKSPACE_DID_CHANGE_WATCHED_FILES,
            params,
            self._client.workspace_did_change_watched_files,
        )
        return True
