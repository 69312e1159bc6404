"""Data models shared between the host and the connection."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

from lsprotocol import types as lsp

# Language ids by file suffix, for hosts that open documents from disk
LANGUAGE_IDS = {
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
}


@dataclass(frozen=True)
class TextDocument:
    """An open document as the host sees it."""

    uri: str
    language_id: str
    version: int
    text: str

    @property
    def scheme(self) -> str:
        return urlparse(self.uri).scheme

    @classmethod
    def from_path(cls, path: Path, version: int = 1) -> "TextDocument":
        """Open a file from disk, guessing the language id from its suffix."""
        path = path.resolve()
        return cls(
            uri=path.as_uri(),
            language_id=LANGUAGE_IDS.get(path.suffix.lower(), "plaintext"),
            version=version,
            text=path.read_text(encoding="utf-8"),
        )


@dataclass(frozen=True)
class FileChange:
    """A watched file was created, changed or deleted."""

    uri: str
    type: lsp.FileChangeType

    def to_lsp(self) -> lsp.FileEvent:
        return lsp.FileEvent(uri=self.uri, type=self.type)


class Disposable:
    """Runs a cleanup callback once."""

    def __init__(self, callback: Callable[[], None] | None = None):
        self._callback = callback
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        if self._callback is not None:
            self._callback()


def uri_to_path(uri: str) -> Path:
    """Convert a file URI to a Path."""
    parsed = urlparse(uri)
    path = unquote(parsed.path)
    # Windows drive letters come through as /C:/...
    if path.startswith("/") and len(path) > 2 and path[2] == ":":
        path = path[1:]
    return Path(path)
