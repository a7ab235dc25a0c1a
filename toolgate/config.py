# -*- coding: utf-8 -*-
"""Location: ./toolgate/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Toolgate Configuration.
This module defines the runtime settings for the code execution backends,
the SSE session transport and the tool-call transformer. Values are read from
environment variables (or a ``.env`` file) through pydantic-settings.

Examples:
    >>> from toolgate.config import Settings
    >>> s = Settings(code_execution_timeout_ms=5000)
    >>> s.code_execution_timeout_ms
    5000
    >>> s.tool_call_start_tag
    '```tool'
"""

# Standard
from functools import lru_cache
import os
from pathlib import Path
import tempfile
from typing import List

# Third-Party
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_scratch_dir() -> Path:
    """Return the default scratch directory for subprocess executions."""
    return Path(tempfile.gettempdir()) / ".deno_runner_tmp"


class Settings(BaseSettings):
    """Toolgate settings.

    Examples:
        >>> s = Settings(deno_permission_args="--allow-net --allow-env")
        >>> s.permission_overrides
        ['--allow-net', '--allow-env']
        >>> Settings(deno_permission_args="").permission_overrides
        []
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "toolgate"
    host: str = "127.0.0.1"
    port: int = 4444

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = False
    log_file: str = "toolgate.log"
    log_folder: str = ""

    # Code execution
    code_execution_timeout_ms: int = Field(default=60_000, gt=0, description="Wall-clock limit for one execution")
    code_execution_scratch_dir: Path = Field(default_factory=_default_scratch_dir)
    deno_path: str = "deno"
    deno_permission_args: str = ""
    embedded_auto_install: bool = True
    preload_timeout_seconds: int = 120

    # Tool-call transformer
    tool_call_start_tag: str = "```tool"
    tool_call_end_tag: str = "```"

    # SSE transport
    sse_path: str = "/sse"
    messages_path: str = "/messages"
    sse_keepalive_enabled: bool = True
    sse_keepalive_interval: float = 30.0
    sse_retry_timeout: int = 5000

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        """Normalise the log level name.

        Args:
            value: Raw level name.

        Returns:
            str: Upper-cased level name.
        """
        return value.upper()

    @property
    def permission_overrides(self) -> List[str]:
        """Deno permission flags supplied by the operator."""
        return [flag for flag in self.deno_permission_args.split(" ") if flag]

    @property
    def log_path(self) -> str:
        """Full path of the JSON log file."""
        if self.log_folder:
            return os.path.join(self.log_folder, self.log_file)
        return self.log_file


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance.

    Returns:
        Settings: Process-wide settings.
    """
    return Settings()


settings = get_settings()
