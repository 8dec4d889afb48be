"""Destinations for converter output.

A ``MessageSink`` receives the service messages the converter produces and
the raw lines it passes through unchanged.
"""

from __future__ import annotations

from typing import Protocol, TextIO, runtime_checkable

from .service_messages import ServiceMessage


@runtime_checkable
class MessageSink(Protocol):
    """Protocol for consumers of converter output.

    Both methods return ``True`` when the output was accepted.
    """

    def emit(self, message: ServiceMessage) -> bool:
        """Consume one service message."""
        ...

    def emit_raw(self, line: str) -> bool:
        """Consume one line that is passed through without conversion."""
        ...


class StreamSink:
    """Write encoded messages and raw lines to a text stream.

    Attributes:
        stream: Destination, e.g. ``sys.stdout``.
        forward_raw: Whether raw lines are written at all.
    """

    def __init__(self, stream: TextIO, *, forward_raw: bool = True) -> None:
        self.stream = stream
        self.forward_raw = forward_raw

    def emit(self, message: ServiceMessage) -> bool:
        self.stream.write(message.encode() + "\n")
        return True

    def emit_raw(self, line: str) -> bool:
        if self.forward_raw:
            self.stream.write(line + "\n")
        return True

    def flush(self) -> None:
        self.stream.flush()


class CollectingSink:
    """Keep all output in memory, in the order it was produced."""

    def __init__(self) -> None:
        self.messages: list[ServiceMessage] = []
        self.raw_lines: list[str] = []
        self.lines: list[str] = []

    def emit(self, message: ServiceMessage) -> bool:
        self.messages.append(message)
        self.lines.append(message.encode())
        return True

    def emit_raw(self, line: str) -> bool:
        self.raw_lines.append(line)
        self.lines.append(line)
        return True

    def named(self, name: str) -> list[ServiceMessage]:
        """Return the collected messages of one kind."""
        return [m for m in self.messages if m.name == name]

    def clear(self) -> None:
        self.messages.clear()
        self.raw_lines.clear()
        self.lines.clear()
