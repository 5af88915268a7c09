# card_reader/transport/base.py

import asyncio
from abc import ABC, abstractmethod
from typing import Any


class BaseTransport(ABC):
    """
    Abstract base class for the line-oriented duplex channel to the reader.

    Defines the common interface for connecting, disconnecting, reading one
    line and writing text asynchronously. Concrete implementations handle
    the specifics of serial or mock communication. The transport does not
    run a read loop of its own; the client pulls lines with ``read_line``.
    """

    def __init__(self, connection_details: dict[str, Any]):
        """
        Initializes the transport base.

        Args:
            connection_details: A dictionary containing parameters needed to
                                open the channel (e.g., {'port': 'COM3', 'baudrate': 115200}).
        """
        self._connection_details = connection_details
        self._connected = False
        self._connection_lock = asyncio.Lock() # Prevent race conditions during connect/disconnect

    @abstractmethod
    async def connect(self) -> None:
        """
        Opens the channel to the reader.

        Raises:
            ConnectionError: If the channel cannot be opened.
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """
        Closes the channel. Safe to call even if not connected.
        """
        pass

    @abstractmethod
    async def read_line(self, timeout: float) -> str:
        """
        Reads one line, terminator included, waiting at most ``timeout`` seconds.

        Raises:
            ReadTimeoutError: If no complete line arrived in time.
            ReadError: If the channel is closed or reading fails.
        """
        pass

    @abstractmethod
    async def write(self, text: str) -> None:
        """
        Writes text to the channel.

        Raises:
            TransportError: If not connected.
            WriteError: If writing fails or times out.
        """
        pass

    def is_connected(self) -> bool:
        """Returns True if the channel is currently open, False otherwise."""
        return self._connected

