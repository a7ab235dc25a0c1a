# -*- coding: utf-8 -*-
"""Location: ./toolgate/utils/tool_call_scanner.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tool-call marker scanner.

Splits a text buffer into plain-text and tool-call segments delimited by an
open/close marker pair. Segments carry half-open ``[start, end)`` ranges into
the scanned buffer so the caller can splice them out once emitted. Text that
might still be the beginning of an open marker is held back unless the scan
is flushing.

Examples:
    >>> tags = ToolCallTags("<t>", "</t>")
    >>> result = scan_buffer('a<t>{"name": "x"}</t>b', tags, flushing=True)
    >>> [(s.kind, s.content) for s in result.segments]
    [('text', 'a'), ('tool', '<t>{"name": "x"}</t>')]
    >>> result.segments[1].tool_call_content
    '{"name": "x"}'
    >>> scan_buffer("hello world", tags).segments[0].content
    'hello wor'
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional

TEXT = "text"
TOOL = "tool"


@dataclass(frozen=True)
class ToolCallTags:
    """Open and close markers around a tool-call payload."""

    open: str = "```tool"
    close: str = "```"

    def __post_init__(self) -> None:
        if not self.open or not self.close:
            raise ValueError("Tool-call markers must be non-empty")

    def wrap(self, content: str) -> str:
        """Return ``content`` surrounded by the markers."""
        return f"{self.open}{content}{self.close}"


@dataclass
class ParsedSegment:
    """One emitted piece of the buffer."""

    kind: str
    content: str
    start: int
    end: int
    tool_call_content: Optional[str] = None


@dataclass
class ScanResult:
    """Segments found by one scan, in buffer order."""

    segments: List[ParsedSegment] = field(default_factory=list)
    awaiting_close: bool = False


def scan_buffer(buffer: str, tags: ToolCallTags, flushing: bool = False) -> ScanResult:
    """Scan ``buffer`` for plain text and complete tool calls.

    Args:
        buffer: Text accumulated so far.
        tags: Marker pair.
        flushing: True at end of stream; no text is held back for a partial
            open marker and the caller emits whatever remains.

    Returns:
        ScanResult: Emitted segments; ``awaiting_close`` is set when an open
        marker was found without its close marker.

    Examples:
        >>> tags = ToolCallTags("<t>", "</t>")
        >>> result = scan_buffer("x<t>{", tags)
        >>> [(s.kind, s.content) for s in result.segments], result.awaiting_close
        ([('text', 'x')], True)
        >>> result = scan_buffer("<t>{}</t><t>{}</t>", tags)
        >>> [(s.start, s.end) for s in result.segments]
        [(0, 9), (9, 18)]
    """
    result = ScanResult()
    safe_window = len(tags.open) - 1
    cursor = 0

    while cursor < len(buffer):
        open_at = buffer.find(tags.open, cursor)
        if open_at < 0:
            if not flushing:
                safe_end = len(buffer) - safe_window
                if safe_end > cursor:
                    result.segments.append(ParsedSegment(TEXT, buffer[cursor:safe_end], cursor, safe_end))
            break

        if open_at > cursor:
            result.segments.append(ParsedSegment(TEXT, buffer[cursor:open_at], cursor, open_at))

        payload_start = open_at + len(tags.open)
        close_at = buffer.find(tags.close, payload_start)
        if close_at < 0:
            result.awaiting_close = True
            break

        end = close_at + len(tags.close)
        payload = buffer[payload_start:close_at].strip()
        result.segments.append(ParsedSegment(TOOL, tags.wrap(payload), open_at, end, tool_call_content=payload))
        cursor = end

    return result
