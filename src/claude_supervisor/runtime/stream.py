"""Newline-delimited JSON (stream-json) parser.

Turns the agent's stdout byte stream into an ordered sequence of
``StreamEvent`` records, one per non-empty line. Malformed framing stops
the sequence with ``StreamParseError``; events yielded before the failure
stay valid.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .errors import StreamParseError

__all__ = [
    "LineReader",
    "StreamEvent",
    "decode_line",
    "parse_stream_events",
]


class LineReader(Protocol):
    """Anything with an ``asyncio.StreamReader``-style ``readline()``."""

    async def readline(self) -> bytes: ...


class StreamEvent(BaseModel):
    """One decoded stdout record, forwarded verbatim.

    Attributes:
        raw: The decoded JSON object
        line_no: 1-based line number in the stdout stream
    """

    model_config = ConfigDict(frozen=True)

    raw: dict[str, Any] = Field(default_factory=dict)
    line_no: int = 0

    def _str_field(self, key: str) -> str:
        value = self.raw.get(key)
        return value if isinstance(value, str) else ""

    @property
    def type(self) -> str:
        """Record type, e.g. "system", "assistant", "user", "result"."""
        return self._str_field("type")

    @property
    def subtype(self) -> str:
        return self._str_field("subtype")

    @property
    def session_id(self) -> str:
        return self._str_field("session_id")

    def to_json(self) -> str:
        """Serialise the record back to one JSON line (without newline)."""
        return json.dumps(self.raw, ensure_ascii=False)


def decode_line(line: bytes, line_no: int) -> StreamEvent | None:
    """Decode one stdout line.

    Args:
        line: Raw line, with or without trailing newline
        line_no: 1-based line number, used for events and errors

    Returns:
        The event, or None for a blank line

    Raises:
        StreamParseError: The line is not a JSON object
    """
    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StreamParseError(line_no, text, f"invalid JSON: {e.msg}") from e
    except RecursionError as e:
        # Nesting deep enough to exhaust the decoder's stack
        raise StreamParseError(line_no, text, "invalid JSON: nesting too deep") from e

    if not isinstance(data, dict):
        raise StreamParseError(
            line_no, text, f"expected a JSON object, got {type(data).__name__}"
        )

    return StreamEvent(raw=data, line_no=line_no)


async def parse_stream_events(reader: LineReader) -> AsyncIterator[StreamEvent]:
    """Yield events from a line-oriented byte stream until EOF.

    One read, one decode attempt, at most one event. A trailing record
    without a terminating newline is decoded like any other line.

    Args:
        reader: Source of lines (an ``asyncio.StreamReader`` in practice)

    Yields:
        Events in input order

    Raises:
        StreamParseError: Malformed line, or a line longer than the
            reader's buffer limit
    """
    line_no = 0
    while True:
        line_no += 1
        try:
            line = await reader.readline()
        except ValueError as e:
            # StreamReader.readline() reports an exceeded limit as ValueError
            raise StreamParseError(line_no, "", f"line exceeds buffer limit: {e}") from e

        if not line:
            return

        event = decode_line(line, line_no)
        if event is not None:
            yield event
