# -*- coding: utf-8 -*-
"""Location: ./toolgate/models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared models.

Holds the log level enumeration used by the logging service and the stream
parts that flow through the tool-call transformer. Stream parts mirror the
shape of a language-model streaming response: plain text deltas, structured
tool invocations, and anything else (reasoning, finish markers) which the
transformer passes through untouched.

Examples:
    >>> TextDeltaPart(text_delta="hi").type
    'text-delta'
    >>> ToolCallPart(tool_call_id="1", tool_name="search", args="{}").tool_call_type
    'function'
"""

# Standard
from enum import Enum
from typing import Any, Dict, Literal

# Third-Party
from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """RFC 5424 severity levels."""

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"


class TextDeltaPart(BaseModel):
    """A fragment of plain model output."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text-delta"] = "text-delta"
    text_delta: str


class ToolCallPart(BaseModel):
    """A structured tool invocation extracted from model output."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool-call"] = "tool-call"
    tool_call_type: Literal["function"] = "function"
    tool_call_id: str
    tool_name: str
    args: str = Field(..., description="JSON encoded parameters object")


class GenericStreamPart(BaseModel):
    """Any other stream part (reasoning, finish, ...); forwarded unchanged."""

    model_config = ConfigDict(frozen=True)

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
