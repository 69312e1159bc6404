"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest
from lsprotocol import types as lsp

from runn_client.host import DocumentListener, HostContext, OutputChannel
from runn_client.models import Disposable, FileChange


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.returncode: int | None = None
        self.killed = False
        self.terminated = False

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15


class FakeLanguageClient:
    """Records everything the connection sends; no real process."""

    def __init__(
        self,
        *,
        spawn_error: OSError | None = None,
        initialize_error: Exception | None = None,
        initialize_delay: float = 0.0,
        hang_initialize: bool = False,
        hang_shutdown: bool = False,
    ):
        self.spawn_error = spawn_error
        self.initialize_error = initialize_error
        self.initialize_delay = initialize_delay
        self.hang_initialize = hang_initialize
        self.hang_shutdown = hang_shutdown

        self.spawned: list[tuple[str, tuple[str, ...], dict[str, Any]]] = []
        self.calls: list[tuple[str, Any]] = []
        self.handlers: dict[str, Callable[[Any], None]] = {}
        self.exit_callbacks: list[Callable[[int | None], None]] = []
        self.process: FakeProcess | None = None
        self.stop_count = 0

    @property
    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def feature(self, name: str) -> Callable[[Callable[[Any], None]], Callable[[Any], None]]:
        def decorator(f: Callable[[Any], None]) -> Callable[[Any], None]:
            self.handlers[name] = f
            return f

        return decorator

    def add_exit_callback(self, callback: Callable[[int | None], None]) -> None:
        self.exit_callbacks.append(callback)

    async def start_io(self, cmd: str, *args: str, **kwargs: Any) -> None:
        self.spawned.append((cmd, args, kwargs))
        if self.spawn_error is not None:
            raise self.spawn_error
        self.process = FakeProcess()

    async def initialize_async(self, params: lsp.InitializeParams) -> lsp.InitializeResult:
        self.calls.append((lsp.INITIALIZE, params))
        if self.initialize_delay:
            await asyncio.sleep(self.initialize_delay)
        if self.hang_initialize:
            await asyncio.Event().wait()
        if self.initialize_error is not None:
            raise self.initialize_error
        return lsp.InitializeResult(
            capabilities=lsp.ServerCapabilities(text_document_sync=lsp.TextDocumentSyncKind.Full)
        )

    def initialized(self, params: lsp.InitializedParams) -> None:
        self.calls.append((lsp.INITIALIZED, params))

    async def shutdown_async(self, params: None) -> None:
        self.calls.append((lsp.SHUTDOWN, params))
        if self.hang_shutdown:
            await asyncio.Event().wait()

    def exit(self, params: None) -> None:
        self.calls.append((lsp.EXIT, params))

    async def stop(self) -> None:
        self.stop_count += 1
        if self.process is not None and self.process.returncode is None:
            self.process.terminate()

    def text_document_did_open(self, params: Any) -> None:
        self.calls.append((lsp.TEXT_DOCUMENT_DID_OPEN, params))

    def text_document_did_change(self, params: Any) -> None:
        self.calls.append((lsp.TEXT_DOCUMENT_DID_CHANGE, params))

    def text_document_did_save(self, params: Any) -> None:
        self.calls.append((lsp.TEXT_DOCUMENT_DID_SAVE, params))

    def text_document_did_close(self, params: Any) -> None:
        self.calls.append((lsp.TEXT_DOCUMENT_DID_CLOSE, params))

    def workspace_did_change_watched_files(self, params: Any) -> None:
        self.calls.append((lsp.WORKSPACE_DID_CHANGE_WATCHED_FILES, params))

    # Server side simulation

    def emit(self, method: str, params: Any) -> None:
        self.handlers[method](params)

    def simulate_exit(self, returncode: int) -> None:
        if self.process is not None:
            self.process.returncode = returncode
        for callback in list(self.exit_callbacks):
            callback(returncode)


class RecordingHost(HostContext):
    """In-memory host that records what the client asks of it."""

    def __init__(self, workspace_root: Path, **kwargs: Any):
        super().__init__(workspace_root, **kwargs)
        self.channels: dict[str, OutputChannel] = {}
        self.errors: list[str] = []
        self.messages: list[tuple[lsp.MessageType, str]] = []
        self.diagnostics: dict[str, list[lsp.Diagnostic]] = {}
        self.listeners: list[DocumentListener] = []
        self.watchers: list[tuple[str, Callable[[list[FileChange]], object], Disposable]] = []

    def create_output_channel(self, name: str) -> OutputChannel:
        return self.channels.setdefault(name, OutputChannel(name))

    def create_file_system_watcher(
        self,
        glob: str,
        on_change: Callable[[list[FileChange]], object],
    ) -> Disposable:
        disposable = Disposable()
        self.watchers.append((glob, on_change, disposable))
        return disposable

    def register_document_listener(self, listener: DocumentListener) -> Disposable:
        self.listeners.append(listener)

        def unregister() -> None:
            self.listeners.remove(listener)

        return Disposable(unregister)

    def report_error(self, message: str) -> None:
        self.errors.append(message)

    def show_message(self, type: lsp.MessageType, message: str) -> None:
        self.messages.append((type, message))

    def publish_diagnostics(self, uri: str, diagnostics: list[lsp.Diagnostic]) -> None:
        self.diagnostics[uri] = diagnostics

    @property
    def active_watchers(self) -> list[tuple[str, Callable[[list[FileChange]], object], Disposable]]:
        return [w for w in self.watchers if not w[2].disposed]


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """An empty workspace directory."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def host(workspace: Path) -> RecordingHost:
    """Recording host with a clean environment."""
    return RecordingHost(workspace, environ={"PATH": "/usr/bin", "HOME": "/home/runn"})


@pytest.fixture
def fake_client() -> FakeLanguageClient:
    return FakeLanguageClient()
