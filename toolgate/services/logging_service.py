# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Logging Service Implementation.
This module implements structured logging with RFC 5424 severity levels,
log level management, and log event subscriptions. Console output uses a text
formatter; an optional rotating file handler writes JSON records.
"""

# Standard
import asyncio
from datetime import datetime, timezone
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Any, AsyncGenerator, Dict, List, Optional

# Third-Party
from pythonjsonlogger import jsonlogger

# First-Party
from toolgate.config import settings
from toolgate.models import LogLevel

text_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

json_formatter = jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s")

# Global handlers are created lazily
_file_handler: Optional[RotatingFileHandler] = None
_text_handler: Optional[logging.StreamHandler] = None


def _get_file_handler() -> RotatingFileHandler:
    """Get or create the file handler.

    Returns:
        RotatingFileHandler: The file handler for JSON logging.

    Raises:
        ValueError: If file logging is disabled or no log file specified.
    """
    global _file_handler  # pylint: disable=global-statement
    if _file_handler is None:
        if not settings.log_to_file or not settings.log_file:
            raise ValueError("File logging is disabled or no log file specified")

        if settings.log_folder:
            os.makedirs(settings.log_folder, exist_ok=True)

        _file_handler = RotatingFileHandler(settings.log_path, maxBytes=1024 * 1024, backupCount=5)
        _file_handler.setFormatter(json_formatter)
    return _file_handler


def _get_text_handler() -> logging.StreamHandler:
    """Get or create the text handler.

    Returns:
        logging.StreamHandler: The stream handler for console logging.
    """
    global _text_handler  # pylint: disable=global-statement
    if _text_handler is None:
        _text_handler = logging.StreamHandler()
        _text_handler.setFormatter(text_formatter)
    return _text_handler


class LoggingService:
    """Toolgate logging service.

    Loggers are cached at class level so every module calling
    ``LoggingService().get_logger(__name__)`` shares the same handlers.

    Examples:
        >>> service = LoggingService()
        >>> logger = service.get_logger("toolgate.doctest")
        >>> logger is LoggingService().get_logger("toolgate.doctest")
        True
    """

    _loggers: Dict[str, logging.Logger] = {}

    def __init__(self):
        """Initialize logging service."""
        try:
            self._level = LogLevel(settings.log_level.lower())
        except ValueError:
            self._level = LogLevel.INFO
        self._subscribers: List[asyncio.Queue] = []

    async def initialize(self) -> None:
        """Attach handlers to the root logger.

        Examples:
            >>> import asyncio
            >>> asyncio.run(LoggingService().initialize())
        """
        root = logging.getLogger()
        if _get_text_handler() not in root.handlers:
            root.addHandler(_get_text_handler())

        if settings.log_to_file and settings.log_file:
            try:
                handler = _get_file_handler()
                if handler not in root.handlers:
                    root.addHandler(handler)
                logging.info(f"File logging enabled: {settings.log_path}")
            except Exception as e:
                logging.warning(f"Failed to initialize file logging: {e}")
        else:
            logging.info("File logging disabled - logging to stdout/stderr only")

        root.setLevel(getattr(logging, self._level.value.upper(), logging.INFO))
        logging.info("Logging service initialized")

    async def shutdown(self) -> None:
        """Shutdown logging service.

        Examples:
            >>> import asyncio
            >>> asyncio.run(LoggingService().shutdown())
        """
        self._subscribers.clear()
        logging.info("Logging service shutdown")

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create logger instance.

        Records propagate to the root logger, which owns the handlers once
        :meth:`initialize` has run.

        Args:
            name: Logger name

        Returns:
            Logger instance

        Examples:
            >>> import logging
            >>> isinstance(LoggingService().get_logger("test"), logging.Logger)
            True
        """
        if name not in self._loggers:
            logger = logging.getLogger(name)
            logger.setLevel(getattr(logging, self._level.value.upper(), logging.INFO))
            self._loggers[name] = logger

        return self._loggers[name]

    async def set_level(self, level: LogLevel) -> None:
        """Set minimum log level for all registered loggers.

        Args:
            level: New log level

        Examples:
            >>> import asyncio
            >>> service = LoggingService()
            >>> asyncio.run(service.set_level(LogLevel.DEBUG))
            >>> service.get_logger("toolgate.doctest.level").level == logging.DEBUG
            True
            >>> asyncio.run(service.set_level(LogLevel.INFO))
        """
        self._level = level

        log_level = getattr(logging, level.value.upper(), logging.INFO)
        for logger in self._loggers.values():
            logger.setLevel(log_level)

        await self.notify(f"Log level set to {level.value}", LogLevel.INFO, "logging")

    async def notify(self, data: Any, level: LogLevel, logger_name: Optional[str] = None) -> None:
        """Log a message and forward it to subscribers.

        Args:
            data: Log message data
            level: Log severity level
            logger_name: Optional logger name
        """
        if not self._should_log(level):
            return

        message = {
            "type": "log",
            "data": {
                "level": level.value,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        if logger_name:
            message["data"]["logger"] = logger_name

        logger = self.get_logger(logger_name or "")
        std_level = {LogLevel.NOTICE: logging.INFO, LogLevel.ALERT: logging.CRITICAL, LogLevel.EMERGENCY: logging.CRITICAL}.get(level)
        logger.log(std_level or getattr(logging, level.value.upper()), data)

        for queue in self._subscribers:
            try:
                await queue.put(message)
            except Exception as e:
                logger.error(f"Failed to notify subscriber: {e}")

    async def subscribe(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Subscribe to log messages.

        Yields:
            Log message events
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                message = await queue.get()
                yield message
        finally:
            self._subscribers.remove(queue)

    def _should_log(self, level: LogLevel) -> bool:
        """Check if level meets minimum threshold.

        Args:
            level: Log level to check

        Returns:
            True if should log
        """
        order = list(LogLevel)
        return order.index(level) >= order.index(self._level)
