# card_reader/transport/mock.py

import asyncio
import logging
import time
from typing import Optional, Any, Dict, List, Union
from collections import deque

from card_reader.transport.base import BaseTransport
from card_reader.core.exceptions import (
    TransportError, SerialConnectionError, ReadError, ReadTimeoutError, WriteError
)

logger = logging.getLogger(__name__)

class MockTransport(BaseTransport):
    """
    A mock transport layer for testing and simulation.

    Simulates opening, closing, reading and writing lines without actual
    hardware. Incoming lines (or exceptions to raise from ``read_line``)
    are queued up by the test; written data is recorded for inspection.
    The same instance can be connected again after a disconnect.
    """

    def __init__(self, connection_details: Optional[Dict[str, Any]] = None, name: str = "Mock"):
        """
        Initializes the Mock Transport.

        Args:
            connection_details: Not strictly used but kept for interface compatibility.
            name: A name for this mock instance for logging purposes.
        """
        super().__init__(connection_details if connection_details is not None else {})
        self._name = name
        # Lines (str) or exceptions the simulated device will produce
        self._incoming: deque[Union[str, BaseException]] = deque()
        # Text "written" to the device (can be inspected by tests)
        self._sent_data_queue: deque[str] = deque()
        self._data_available_event = asyncio.Event()
        self._connect_error: Optional[BaseException] = None
        self._disconnect_error: Optional[BaseException] = None
        self._write_error: Optional[BaseException] = None

        self.connect_count = 0
        self.disconnect_count = 0
        # time.monotonic() of every read_line call, for pacing assertions
        self.read_attempts: List[float] = []

        logger.debug(f"MockTransport '{self._name}' initialized.")

    async def connect(self) -> None:
        """Simulates opening the port."""
        async with self._connection_lock:
            if self._connected:
                logger.warning(f"[{self._name}] Already connected.")
                return

            if self._connect_error is not None:
                error, self._connect_error = self._connect_error, None
                logger.info(f"[{self._name}] Simulated connection failure: {error}")
                raise error

            self._connected = True
            self.connect_count += 1
            logger.info(f"[{self._name}] Mock connection established.")

    async def disconnect(self) -> None:
        """Simulates closing the port."""
        async with self._connection_lock:
            if not self._connected:
                return
            self._connected = False
            self.disconnect_count += 1
            # Wake a pending read so it notices the closed port
            self._data_available_event.set()
            if self._disconnect_error is not None:
                error, self._disconnect_error = self._disconnect_error, None
                raise error
            logger.info(f"[{self._name}] Mock connection closed.")

    async def read_line(self, timeout: float) -> str:
        """Returns the next queued line, raising queued exceptions in order."""
        self.read_attempts.append(time.monotonic())
        if not self._connected:
            raise ReadError(f"[{self._name}] Cannot read: Not connected.")

        if not self._incoming:
            self._data_available_event.clear()
            try:
                await asyncio.wait_for(self._data_available_event.wait(), timeout)
            except asyncio.TimeoutError as e:
                raise ReadTimeoutError("The read operation timed out.") from e
            if not self._connected:
                raise ReadError(f"[{self._name}] Port closed while reading.")
            if not self._incoming:
                raise ReadTimeoutError("The read operation timed out.")

        item = self._incoming.popleft()
        if isinstance(item, BaseException):
            raise item
        logger.debug(f"[{self._name}] Mock 'receiving': {item!r}")
        return item

    async def write(self, text: str) -> None:
        """Simulates writing data."""
        if not self.is_connected():
            raise TransportError(f"[{self._name}] Cannot write data: Not connected.")
        if self._write_error is not None:
            error, self._write_error = self._write_error, None
            raise error
        logger.debug(f"[{self._name}] Simulating write: {text!r}")
        self._sent_data_queue.append(text)

    # --- Mock Control Methods ---

    def add_line(self, line: str) -> None:
        """Queues one line as if the device had sent it (terminator included or not)."""
        self._incoming.append(line)
        self._data_available_event.set()

    def add_lines(self, lines: List[str]) -> None:
        for line in lines:
            self._incoming.append(line)
        if lines:
            self._data_available_event.set()

    def add_read_error(self, error: BaseException) -> None:
        """Queues an exception to be raised by the next read in line."""
        self._incoming.append(error)
        self._data_available_event.set()

    def fail_next_connect(self, error: Optional[BaseException] = None) -> None:
        """Makes the next connect() raise (a SerialConnectionError by default)."""
        self._connect_error = error or SerialConnectionError(port=self._name, message="Simulated open failure.")

    def fail_next_disconnect(self, error: Optional[BaseException] = None) -> None:
        self._disconnect_error = error or TransportError(f"[{self._name}] Simulated close failure.")

    def fail_next_write(self, error: Optional[BaseException] = None) -> None:
        self._write_error = error or WriteError(f"[{self._name}] Simulated write failure.")

    def get_sent_data(self) -> Optional[str]:
        """Retrieves the oldest written text (FIFO)."""
        try:
            return self._sent_data_queue.popleft()
        except IndexError:
            return None

    def get_all_sent_data(self) -> List[str]:
        """Retrieves and clears all written text."""
        data = list(self._sent_data_queue)
        self._sent_data_queue.clear()
        return data

