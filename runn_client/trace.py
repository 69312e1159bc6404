"""
Protocol trace output.

The trace sink is a dedicated output surface for wire-level records, kept
apart from the ordinary diagnostics channel. Records follow the familiar
editor format:

    [Trace - 10:21:33] Sending request 'initialize - (1)'.
    [Trace - 10:21:33] Received response 'initialize - (1)' in 12ms.

At ``verbose`` level each record is followed by its JSON payload.
"""

from __future__ import annotations

import json
import time
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from lsprotocol.converters import get_converter

if TYPE_CHECKING:
    from .host import OutputChannel

TRACE_CHANNEL_NAME = "runn Language Server trace"

_converter = get_converter()


class TraceLevel(str, Enum):
    """Values of the trace.server setting."""

    OFF = "off"
    MESSAGES = "messages"
    VERBOSE = "verbose"


class TraceSink:
    """Append-only trace surface backed by a host output channel."""

    def __init__(self, channel: "OutputChannel"):
        self._channel = channel

    @property
    def name(self) -> str:
        return self._channel.name

    def append(self, text: str) -> None:
        self._channel.append_line(text)


def _payload(data: Any) -> str:
    if not isinstance(data, (dict, list, str, int, float, bool)):
        data = _converter.unstructure(data)
    return json.dumps(data, indent=4, default=str)


class Tracer:
    """Formats protocol events into trace records."""

    def __init__(
        self,
        sink: TraceSink,
        level: TraceLevel = TraceLevel.OFF,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.sink = sink
        self.level = level
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.level is not TraceLevel.OFF

    def _write(self, headline: str, label: str | None = None, data: Any = None) -> None:
        if not self.enabled:
            return
        stamp = self._clock().strftime("%H:%M:%S")
        record = f"[Trace - {stamp}] {headline}"
        if self.level is TraceLevel.VERBOSE and label is not None:
            if data is not None:
                body = f"{label}: {_payload(data)}"
            elif label == "Result":
                body = "No result returned."
            else:
                body = "No parameters provided."
            record = f"{record}\n{body}\n"
        self.sink.append(record)

    def request_sent(self, method: str, request_id: int, params: Any = None) -> float:
        """Record an outgoing request and return its start time."""
        self._write(f"Sending request '{method} - ({request_id})'.", "Params", params)
        return time.monotonic()

    def response_received(self, method: str, request_id: int, started: float, result: Any = None) -> None:
        elapsed = int((time.monotonic() - started) * 1000)
        self._write(
            f"Received response '{method} - ({request_id})' in {elapsed}ms.",
            "Result",
            result,
        )

    def request_failed(self, method: str, request_id: int, started: float, error: BaseException) -> None:
        elapsed = int((time.monotonic() - started) * 1000)
        self._write(
            f"Request '{method} - ({request_id})' failed in {elapsed}ms.",
            "Error",
            str(error),
        )

    def notification_sent(self, method: str, params: Any = None) -> None:
        self._write(f"Sending notification '{method}'.", "Params", params)

    def notification_received(self, method: str, params: Any = None) -> None:
        self._write(f"Received notification '{method}'.", "Params", params)

    def server_trace(self, message: str, verbose: str | None = None) -> None:
        """Append a $/logTrace record sent by the server."""
        if not self.enabled:
            return
        self.sink.append(message if not verbose else f"{message}\n{verbose}")
