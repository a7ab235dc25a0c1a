# -*- coding: utf-8 -*-
"""Location: ./toolgate/transports/base.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Base Transport Interface.
Defines the contract a session transport offers to the tool server bound to it.
"""

# Standard
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, Dict


class Transport(ABC):
    """Base class for MCP session transports."""

    @abstractmethod
    async def connect(self) -> None:
        """Start the transport so it can carry messages."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport and release its resources."""

    @abstractmethod
    async def send_message(self, message: Dict[str, Any]) -> None:
        """Send a JSON-RPC message to the client.

        Args:
            message: Message to send
        """

    @abstractmethod
    def receive_message(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Iterate over messages received from the client.

        Yields:
            Received JSON-RPC messages
        """

    @abstractmethod
    async def is_connected(self) -> bool:
        """Return True while the transport is connected."""
