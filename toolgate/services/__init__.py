# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Application services: code execution, MCP handling, orchestration, logging.
"""
