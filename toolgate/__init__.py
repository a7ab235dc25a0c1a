# -*- coding: utf-8 -*-
"""Location: ./toolgate/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Toolgate: sandboxed code runner tools served over an MCP SSE transport, plus
a streaming transformer that extracts tool calls from model text output.
"""

__version__ = "0.1.0"
