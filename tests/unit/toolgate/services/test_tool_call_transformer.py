# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolgate/services/test_tool_call_transformer.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Unit tests for toolgate.services.tool_call_transformer.
"""

# Standard
import itertools
import json

# Third-Party
import pytest

# First-Party
from toolgate.config import settings
from toolgate.models import GenericStreamPart, TextDeltaPart, ToolCallPart
from toolgate.runtimes.base import ExecutionCancelled
from toolgate.services.tool_call_transformer import ToolCallTransformer, transform_stream
from toolgate.utils.stream import CancellationToken
from toolgate.utils.tool_call_scanner import ToolCallTags

TAGS = ToolCallTags("```tool", "```")


@pytest.fixture
def transformer():
    counter = itertools.count(1)
    return ToolCallTransformer(TAGS, id_factory=lambda: f"call-{next(counter)}")


def _feed(transformer, *texts):
    parts = []
    for text in texts:
        parts.extend(transformer.transform(TextDeltaPart(text_delta=text)))
    parts.extend(transformer.flush())
    return parts


def _text(parts):
    return "".join(part.text_delta for part in parts if isinstance(part, TextDeltaPart))


async def _aiter(items):
    for item in items:
        yield item


def test_text_tool_text(transformer):
    parts = _feed(transformer, 'a```tool{"name":"x","parameters":{}}```b')

    assert [part.type for part in parts] == ["text-delta", "tool-call", "text-delta", "text-delta"]
    assert parts[0].text_delta == "a"
    assert parts[1] == ToolCallPart(tool_call_id="call-1", tool_name="x", args="{}")
    assert parts[2].text_delta == '```tool{"name":"x","parameters":{}}```'
    assert parts[3].text_delta == "b"
    assert transformer.buffer == ""


def test_markers_split_across_chunks(transformer):
    parts = _feed(transformer, "hi ``", '`tool{"name":"search",', '"parameters":{"q":"cats"}}``', "`tail")

    calls = [part for part in parts if isinstance(part, ToolCallPart)]
    assert len(calls) == 1
    assert calls[0].tool_name == "search"
    assert json.loads(calls[0].args) == {"q": "cats"}
    assert parts[0].text_delta == "hi "
    assert parts[-1].text_delta == "tail"


def test_nothing_emitted_while_waiting_for_close(transformer):
    assert transformer.transform(TextDeltaPart(text_delta='go ```tool{"name":"x"')) == [TextDeltaPart(text_delta="go ")]
    assert transformer.transform(TextDeltaPart(text_delta=', "parameters": {"a": 1}')) == []

    flushed = transformer.flush()
    assert flushed == [TextDeltaPart(text_delta='```tool{"name":"x", "parameters": {"a": 1}')]


def test_multiple_tools_in_one_chunk(transformer):
    text = 'one ```tool{"name":"a"}``` two ```tool{"name":"b","parameters":{"n":2}}``` three'
    parts = _feed(transformer, text)

    calls = [part for part in parts if isinstance(part, ToolCallPart)]
    assert [(call.tool_call_id, call.tool_name) for call in calls] == [("call-1", "a"), ("call-2", "b")]
    assert _text(parts) == 'one ```tool{"name":"a"}``` two ```tool{"name":"b","parameters":{"n":2}}``` three'


def test_plain_text_passes_through_unchanged(transformer):
    parts = _feed(transformer, "Just ", "some ", "ordinary text with `code`.")
    assert _text(parts) == "Just some ordinary text with `code`."
    assert not any(isinstance(part, ToolCallPart) for part in parts)


def test_invalid_payload_degrades_to_text(transformer):
    parts = _feed(transformer, "before ```tool{not json}``` after")

    assert not any(isinstance(part, ToolCallPart) for part in parts)
    error = next(part.text_delta for part in parts if part.text_delta.startswith("[parse error]"))
    assert error.endswith("\n```json\n{not json}\n```\n")
    assert parts[0].text_delta == "before "
    assert parts[-1].text_delta == " after"


def test_missing_name_degrades_to_text(transformer):
    parts = _feed(transformer, '```tool{"parameters":{}}```')
    assert "[parse error] Tool call is missing a string 'name'" in _text(parts)


def test_non_text_parts_pass_through(transformer):
    finish = GenericStreamPart(type="finish", data={"reason": "stop"})
    assert transformer.transform(finish) == [finish]


def test_tags_default_to_settings(monkeypatch):
    monkeypatch.setattr(settings, "tool_call_start_tag", "<tool>")
    monkeypatch.setattr(settings, "tool_call_end_tag", "</tool>")
    transformer = ToolCallTransformer()

    parts = _feed(transformer, '<tool>{"name":"x"}</tool>')
    assert [part.type for part in parts] == ["tool-call", "text-delta"]
    assert parts[1].text_delta == '<tool>{"name":"x"}</tool>'


@pytest.mark.asyncio
async def test_transform_stream_end_to_end():
    upstream = [TextDeltaPart(text_delta='x ```tool{"name":"run"}'), TextDeltaPart(text_delta="``` y"), GenericStreamPart(type="finish")]
    parts = [part async for part in transform_stream(_aiter(upstream), tags=TAGS)]

    assert [part.type for part in parts] == ["text-delta", "tool-call", "text-delta", "finish", "text-delta"]
    assert parts[1].tool_name == "run"
    assert parts[-1].text_delta == " y"


@pytest.mark.asyncio
async def test_transform_stream_stops_on_cancel():
    token = CancellationToken()

    async def upstream():
        yield TextDeltaPart(text_delta="first chunk of text")
        token.cancel(ExecutionCancelled("client went away"))
        yield TextDeltaPart(text_delta="never seen")

    received = []
    with pytest.raises(ExecutionCancelled, match="client went away"):
        async for part in transform_stream(upstream(), token=token, tags=TAGS):
            received.append(part)

    assert _text(received) == "first chunk o"
