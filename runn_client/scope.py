"""
Which documents and files the connection is responsible for.

The selector is plain configuration: document filters decide which open
buffers are synchronized with the server, and the watched-file glob decides
which filesystem events are forwarded as workspace/didChangeWatchedFiles.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path, PurePath

from .models import TextDocument

WATCHED_FILE_GLOB = "**/.clientrc"


@dataclass(frozen=True)
class DocumentFilter:
    """Match documents by URI scheme and language id."""

    scheme: str
    language: str

    def matches(self, document: TextDocument) -> bool:
        return document.scheme == self.scheme and document.language_id == self.language


@dataclass(frozen=True)
class ScopeSelector:
    """Document filters plus the glob of configuration files to watch."""

    document_filters: tuple[DocumentFilter, ...]
    watched_file_glob: str

    def matches(self, document: TextDocument) -> bool:
        """True if any filter selects the document."""
        return any(f.matches(document) for f in self.document_filters)

    def watches(self, path: PurePath | str, root: Path | None = None) -> bool:
        """True if the path matches the watched glob (relative to root when inside it)."""
        return glob_matches(self.watched_file_glob, path, root)


def glob_matches(glob: str, path: PurePath | str, root: Path | None = None) -> bool:
    candidate = PurePath(path)
    if root is not None:
        try:
            candidate = candidate.relative_to(root)
        except ValueError:
            pass
    return compile_glob(glob).fullmatch(candidate.as_posix()) is not None


def build_scope_selector() -> ScopeSelector:
    """Local YAML runbooks, plus .clientrc files anywhere in the workspace."""
    return ScopeSelector(
        document_filters=(DocumentFilter(scheme="file", language="yaml"),),
        watched_file_glob=WATCHED_FILE_GLOB,
    )


@lru_cache(maxsize=64)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """
    Translate an editor-style glob into a regex.

    Supports ``**`` (any number of path segments), ``*`` and ``?`` (within one
    segment), ``{a,b}`` alternation and ``[...]`` character classes.
    """
    out: list[str] = []
    depth = 0
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "{":
            depth += 1
            out.append("(?:")
        elif c == "}" and depth:
            depth -= 1
            out.append(")")
        elif c == "," and depth:
            out.append("|")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    if depth:
        raise ValueError(f"Unbalanced braces in glob: {pattern!r}")
    return re.compile("".join(out))
