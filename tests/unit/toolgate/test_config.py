# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolgate/test_config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Unit tests for toolgate.config.
"""

# Standard
from pathlib import Path

# Third-Party
from pydantic import ValidationError
import pytest

# First-Party
from toolgate.config import Settings


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CODE_EXECUTION_TIMEOUT_MS", "2500")
    monkeypatch.setenv("DENO_PATH", "/opt/deno/bin/deno")
    monkeypatch.setenv("TOOL_CALL_START_TAG", "<tool_call>")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = Settings(_env_file=None)

    assert s.code_execution_timeout_ms == 2500
    assert s.deno_path == "/opt/deno/bin/deno"
    assert s.tool_call_start_tag == "<tool_call>"
    assert s.log_level == "DEBUG"


def test_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, code_execution_timeout_ms=0)


def test_scratch_dir_is_a_path():
    s = Settings(_env_file=None, code_execution_scratch_dir="/tmp/runner")
    assert s.code_execution_scratch_dir == Path("/tmp/runner")


def test_log_path_joins_folder():
    assert Settings(_env_file=None, log_folder="/var/log/toolgate", log_file="app.log").log_path == "/var/log/toolgate/app.log"
    assert Settings(_env_file=None, log_folder="", log_file="app.log").log_path == "app.log"
