"""
The editing host the client runs inside.

HostContext is the surface the lifecycle manager needs from an editor:
output channels, a file system watcher, document events, and places to
report errors, messages and diagnostics. HeadlessHost implements it for a
terminal session using rich for output and watchdog for file events.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

from lsprotocol import types as lsp
from rich.console import Console
from rich.text import Text

from .models import Disposable, FileChange, TextDocument, uri_to_path
from .watcher import watch_workspace

if TYPE_CHECKING:
    from .lifecycle import RunnExtension

logger = logging.getLogger(__name__)


class DocumentListener(Protocol):
    """Receives document events from the host."""

    def did_open(self, document: TextDocument) -> Any: ...

    def did_change(self, document: TextDocument) -> Any: ...

    def did_save(self, document: TextDocument) -> Any: ...

    def did_close(self, document: TextDocument) -> Any: ...


class OutputChannel:
    """A named, append-only text surface."""

    def __init__(self, name: str, console: Console | None = None, style: str = "cyan"):
        self.name = name
        self.lines: list[str] = []
        self._console = console
        self._style = style

    def append_line(self, text: str) -> None:
        self.lines.append(text)
        if self._console is not None:
            self._console.print(Text.assemble((f"[{self.name}] ", self._style), text), highlight=False)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class HostContext(ABC):
    """What the client needs from its host."""

    def __init__(
        self,
        workspace_root: Path,
        *,
        debug_mode: bool = False,
        environ: Mapping[str, str] | None = None,
    ):
        self.workspace_root = workspace_root
        self.debug_mode = debug_mode
        self.environ: Mapping[str, str] = dict(os.environ if environ is None else environ)
        self.subscriptions: list[Disposable] = []
        self.extension: "RunnExtension | None" = None

    @abstractmethod
    def create_output_channel(self, name: str) -> OutputChannel:
        """Create (or return the existing) output channel with this name."""

    @abstractmethod
    def create_file_system_watcher(
        self,
        glob: str,
        on_change: Callable[[list[FileChange]], object],
    ) -> Disposable:
        """Deliver changes to files matching glob until disposed."""

    @abstractmethod
    def register_document_listener(self, listener: DocumentListener) -> Disposable:
        """Deliver document events to listener until disposed."""

    @abstractmethod
    def report_error(self, message: str) -> None:
        """Surface an error to the user."""

    def show_message(self, type: lsp.MessageType, message: str) -> None:
        logger.info("%s: %s", lsp.MessageType(type).name, message)

    def publish_diagnostics(self, uri: str, diagnostics: list[lsp.Diagnostic]) -> None:
        logger.debug("%d diagnostic(s) for %s", len(diagnostics), uri)

    def dispose_subscriptions(self) -> None:
        while self.subscriptions:
            self.subscriptions.pop().dispose()


_MESSAGE_STYLES = {
    lsp.MessageType.Error: "bold red",
    lsp.MessageType.Warning: "yellow",
    lsp.MessageType.Info: "green",
    lsp.MessageType.Log: "dim",
}

_SEVERITY_STYLES = {
    lsp.DiagnosticSeverity.Error: ("error", "red"),
    lsp.DiagnosticSeverity.Warning: ("warning", "yellow"),
    lsp.DiagnosticSeverity.Information: ("info", "blue"),
    lsp.DiagnosticSeverity.Hint: ("hint", "dim"),
}


class HeadlessHost(HostContext):
    """
    Terminal host.

    Documents are opened from disk with open_document(); listeners that
    register later receive did_open for every document already open.
    """

    def __init__(
        self,
        workspace_root: Path,
        *,
        debug_mode: bool = False,
        environ: Mapping[str, str] | None = None,
        console: Console | None = None,
    ):
        super().__init__(workspace_root, debug_mode=debug_mode, environ=environ)
        self.console = console or Console(stderr=True)
        self.channels: dict[str, OutputChannel] = {}
        self.documents: dict[str, TextDocument] = {}
        self.errors: list[str] = []
        self._listeners: list[DocumentListener] = []

    def create_output_channel(self, name: str) -> OutputChannel:
        if name not in self.channels:
            style = "magenta" if name.endswith("trace") else "cyan"
            self.channels[name] = OutputChannel(name, self.console, style=style)
        return self.channels[name]

    def create_file_system_watcher(
        self,
        glob: str,
        on_change: Callable[[list[FileChange]], object],
    ) -> Disposable:
        watcher = watch_workspace(self.workspace_root, glob, on_change)
        return Disposable(watcher.dispose)

    def register_document_listener(self, listener: DocumentListener) -> Disposable:
        self._listeners.append(listener)
        for document in list(self.documents.values()):
            listener.did_open(document)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(unregister)

    def report_error(self, message: str) -> None:
        self.errors.append(message)
        self.console.print(Text.assemble(("Error: ", "bold red"), message))

    def show_message(self, type: lsp.MessageType, message: str) -> None:
        style = _MESSAGE_STYLES.get(type, "")
        self.console.print(Text(message, style=style))

    def publish_diagnostics(self, uri: str, diagnostics: list[lsp.Diagnostic]) -> None:
        try:
            display = uri_to_path(uri).relative_to(self.workspace_root.resolve())
        except ValueError:
            display = uri_to_path(uri)
        if not diagnostics:
            self.console.print(Text.assemble((str(display), "bold"), (" no problems", "dim")))
            return
        for diag in diagnostics:
            label, style = _SEVERITY_STYLES.get(diag.severity, ("warning", "yellow"))
            start = diag.range.start
            self.console.print(
                Text.assemble(
                    (f"{display}:{start.line + 1}:{start.character + 1}", "bold"),
                    " ",
                    (label, style),
                    f" {diag.message}",
                )
            )

    # -------------------------------------------------------------------------
    # Document events
    # -------------------------------------------------------------------------

    def open_document(self, path: Path) -> TextDocument:
        document = TextDocument.from_path(path)
        self.documents[document.uri] = document
        for listener in list(self._listeners):
            listener.did_open(document)
        return document

    def change_document(self, uri: str, text: str) -> TextDocument:
        previous = self.documents[uri]
        document = TextDocument(
            uri=uri,
            language_id=previous.language_id,
            version=previous.version + 1,
            text=text,
        )
        self.documents[uri] = document
        for listener in list(self._listeners):
            listener.did_change(document)
        return document

    def save_document(self, uri: str) -> None:
        document = self.documents[uri]
        uri_to_path(uri).write_text(document.text, encoding="utf-8")
        for listener in list(self._listeners):
            listener.did_save(document)

    def close_document(self, uri: str) -> None:
        document = self.documents.pop(uri)
        for listener in list(self._listeners):
            listener.did_close(document)
