# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/tool_call_transformer.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tool-call text transformer.

Models without native tool calling are prompted to emit tool invocations as
marked-up JSON inside their text output. This service watches the text-delta
parts of such a stream and turns every complete ``<open>{"name": ..., "parameters":
{...}}<close>`` span into a structured :class:`ToolCallPart`, followed by a text
echo of the tagged span so the conversation transcript stays intact. Payloads
that cannot be parsed are reported inline as text instead of failing the
stream.
"""

# Standard
from typing import AsyncIterable, AsyncIterator, Callable, List, Optional, Tuple, Union
import uuid

# Third-Party
import orjson

# First-Party
from toolgate.config import settings
from toolgate.models import GenericStreamPart, TextDeltaPart, ToolCallPart
from toolgate.services.logging_service import LoggingService
from toolgate.utils.stream import CancellationToken
from toolgate.utils.tool_call_scanner import ParsedSegment, scan_buffer, TEXT, ToolCallTags

logger = LoggingService().get_logger(__name__)

StreamPart = Union[TextDeltaPart, ToolCallPart, GenericStreamPart]


def default_tags() -> ToolCallTags:
    """Return the markers configured in settings."""
    return ToolCallTags(settings.tool_call_start_tag, settings.tool_call_end_tag)


def parse_tool_call(content: str) -> Tuple[str, str]:
    """Parse a tool-call payload.

    Args:
        content: JSON text between the markers.

    Returns:
        Tuple[str, str]: Tool name and JSON-encoded parameters.

    Raises:
        ValueError: If the payload is not ``{"name": str, "parameters": object}``.

    Examples:
        >>> parse_tool_call('{"name": "search", "parameters": {"q": "x"}}')
        ('search', '{"q":"x"}')
        >>> parse_tool_call('{"name": "ping"}')
        ('ping', '{}')
        >>> parse_tool_call('[1, 2]')
        Traceback (most recent call last):
            ...
        ValueError: Tool call must be a JSON object
    """
    payload = orjson.loads(content)
    if not isinstance(payload, dict):
        raise ValueError("Tool call must be a JSON object")
    name = payload.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("Tool call is missing a string 'name'")
    parameters = payload.get("parameters")
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise ValueError("Tool call 'parameters' must be an object")
    return name, orjson.dumps(parameters).decode("utf-8")


class ToolCallTransformer:
    """Stateful transformer for one model output stream.

    Parts must be fed strictly in arrival order from a single task.

    Examples:
        >>> transformer = ToolCallTransformer(ToolCallTags("<t>", "</t>"), id_factory=lambda: "call-1")
        >>> parts = transformer.transform(TextDeltaPart(text_delta='a<t>{"name":"x","parameters":{}}</t>b'))
        >>> parts += transformer.flush()
        >>> [p.type for p in parts]
        ['text-delta', 'tool-call', 'text-delta', 'text-delta']
        >>> parts[0].text_delta, parts[1].tool_name, parts[3].text_delta
        ('a', 'x', 'b')
    """

    def __init__(self, tags: Optional[ToolCallTags] = None, id_factory: Optional[Callable[[], str]] = None) -> None:
        self._tags = tags or default_tags()
        self._new_id = id_factory or (lambda: f"call_{uuid.uuid4().hex}")
        self._buffer = ""

    @property
    def buffer(self) -> str:
        """Text received but not yet emitted."""
        return self._buffer

    def transform(self, part: StreamPart) -> List[StreamPart]:
        """Feed one part and return the parts ready to emit.

        Args:
            part: Incoming stream part; non text-delta parts pass through.

        Returns:
            List[StreamPart]: Parts to forward downstream, in order.
        """
        if not isinstance(part, TextDeltaPart):
            return [part]

        self._buffer += part.text_delta
        segments = scan_buffer(self._buffer, self._tags).segments
        emitted = self._emit(segments)
        self._splice(segments)
        return emitted

    def flush(self) -> List[StreamPart]:
        """Emit everything still buffered at end of stream.

        Returns:
            List[StreamPart]: Trailing tool calls and text.
        """
        segments = scan_buffer(self._buffer, self._tags, flushing=True).segments
        emitted = self._emit(segments)
        self._splice(segments)
        if self._buffer:
            emitted.append(TextDeltaPart(text_delta=self._buffer))
            self._buffer = ""
        return emitted

    def reset(self) -> None:
        """Discard buffered text."""
        self._buffer = ""

    def _splice(self, segments: List[ParsedSegment]) -> None:
        # Right to left so earlier offsets stay valid
        for segment in sorted(segments, key=lambda s: s.start, reverse=True):
            self._buffer = self._buffer[: segment.start] + self._buffer[segment.end :]

    def _emit(self, segments: List[ParsedSegment]) -> List[StreamPart]:
        emitted: List[StreamPart] = []
        for segment in segments:
            if segment.kind == TEXT:
                emitted.append(TextDeltaPart(text_delta=segment.content))
            else:
                emitted.extend(self._tool_parts(segment.tool_call_content or ""))
        return emitted

    def _tool_parts(self, content: str) -> List[StreamPart]:
        try:
            name, args = parse_tool_call(content)
        except ValueError as e:
            logger.warning(f"Failed to parse tool call JSON: {e}. Content: '{content}'")
            return [TextDeltaPart(text_delta=f"[parse error] {e} \n```json\n{content}\n```\n")]

        return [
            ToolCallPart(tool_call_id=self._new_id(), tool_name=name, args=args),
            TextDeltaPart(text_delta=self._tags.wrap(content)),
        ]


async def transform_stream(
    parts: AsyncIterable[StreamPart],
    token: Optional[CancellationToken] = None,
    tags: Optional[ToolCallTags] = None,
) -> AsyncIterator[StreamPart]:
    """Apply a :class:`ToolCallTransformer` to an async stream of parts.

    Args:
        parts: Upstream model output.
        token: Cancelling it discards buffered text and raises its reason.
        tags: Marker pair, defaulting to the configured one.

    Yields:
        StreamPart: Transformed parts.

    Raises:
        BaseException: The token's cancellation reason.
    """
    transformer = ToolCallTransformer(tags)
    async for part in parts:
        if token is not None and token.cancelled:
            transformer.reset()
            raise token.reason
        for out in transformer.transform(part):
            yield out

    if token is not None and token.cancelled:
        transformer.reset()
        raise token.reason
    for out in transformer.flush():
        yield out
