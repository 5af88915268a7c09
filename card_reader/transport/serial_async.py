# card_reader/transport/serial_async.py

import asyncio
import logging
from typing import Optional, Any, Dict

import serial
import serial_asyncio

from card_reader.transport.base import BaseTransport
from card_reader.protocols.line_protocol import ENCODING
from card_reader.core.exceptions import (
    TransportError, ConnectionError, SerialConnectionError, ReadError, ReadTimeoutError, WriteError
)

logger = logging.getLogger(__name__)

DEFAULT_WRITE_TIMEOUT = 0.5 # Seconds allowed for the write buffer to drain

DEFAULT_SERIAL_SETTINGS = {
    'baudrate': 115200,
    'bytesize': serial.EIGHTBITS,
    'parity': serial.PARITY_NONE,
    'stopbits': serial.STOPBITS_ONE,
    'timeout': None, # Must be None for async operation
    'xonxoff': False,
    'rtscts': False,
    'dsrdtr': False,
}

class SerialTransport(BaseTransport):
    """
    Asynchronous serial line transport using pyserial-asyncio.

    The port name is handed to pyserial's ``serial_for_url``, so besides
    device names ('COM3', '/dev/ttyACM0') URLs such as 'loop://' or
    'socket://host:port' work as well.
    """

    def __init__(self, connection_details: Dict[str, Any]):
        """
        Initializes the Serial Transport.

        Args:
            connection_details: Dictionary containing serial port settings.
                Required: 'port' (e.g., '/dev/ttyACM0', 'COM3')
                Optional: 'baudrate', 'bytesize', 'parity', 'stopbits', ...,
                          and 'write_timeout' (seconds to wait for a write to drain).
                          Defaults are taken from DEFAULT_SERIAL_SETTINGS.
        """
        super().__init__(connection_details)

        if 'port' not in self._connection_details:
            raise ValueError("Missing 'port' in connection_details for SerialTransport.")

        self._serial_settings = DEFAULT_SERIAL_SETTINGS.copy()
        self._serial_settings.update(self._connection_details)
        # Write timeout is enforced on drain(); pyserial itself stays non-blocking
        write_timeout = self._serial_settings.pop('write_timeout', None)
        self._write_timeout = float(write_timeout) if write_timeout is not None else DEFAULT_WRITE_TIMEOUT
        self._serial_settings['timeout'] = None

        self._port = self._serial_settings.pop('port')
        self._serial_settings.pop('url', None)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

        logger.debug(f"SerialTransport initialized for port {self._port} with settings: {self._serial_settings}")

    @property
    def port(self) -> str:
        return self._port

    async def connect(self) -> None:
        """Opens the serial port and asserts the DTR and RTS lines."""
        async with self._connection_lock:
            if self._connected:
                logger.warning(f"Serial port {self._port} already connected.")
                return

            logger.info(f"Connecting to serial port {self._port}...")
            try:
                self._reader, self._writer = await serial_asyncio.open_serial_connection(
                    url=self._port, **self._serial_settings
                )
            except serial.SerialException as e:
                logger.error(f"Failed to connect to serial port {self._port}: {e}")
                self._reader = None
                self._writer = None
                raise SerialConnectionError(port=self._port, message=str(e), original_exception=e) from e
            except Exception as e: # Catch other potential errors like OSError or ValueError
                logger.error(f"Unexpected error connecting to {self._port}: {e}")
                self._reader = None
                self._writer = None
                raise ConnectionError(f"Unexpected error connecting to {self._port}: {e}", original_exception=e) from e

            try:
                # The reader boots only with the handshake lines asserted
                serial_instance = self._writer.transport.serial
                serial_instance.dtr = True
                serial_instance.rts = True
            except Exception as e:
                logger.error(f"Failed to assert DTR/RTS on {self._port}: {e}")
                self._writer.close()
                self._reader = None
                self._writer = None
                raise SerialConnectionError(port=self._port, message="Could not assert DTR/RTS.", original_exception=e) from e

            self._connected = True
            logger.info(f"Serial port {self._port} connected successfully.")

    async def disconnect(self) -> None:
        """Closes the serial port."""
        async with self._connection_lock:
            if not self._connected and self._writer is None:
                return

            logger.info(f"Disconnecting from serial port {self._port}...")

            writer = self._writer # Local reference
            self._writer = None
            self._reader = None
            self._connected = False # Mark as disconnected regardless of close errors

            if writer and not writer.is_closing():
                try:
                    writer.close()
                    await writer.wait_closed()
                    logger.debug(f"Serial writer for {self._port} closed.")
                except Exception as e:
                    logger.error(f"Error closing serial writer for {self._port}: {e}")

            logger.info(f"Serial port {self._port} disconnected.")

    async def read_line(self, timeout: float) -> str:
        """Reads one newline-terminated line, decoded as ASCII."""
        reader = self._reader
        if not self._connected or reader is None:
            raise ReadError(f"Cannot read: Serial port {self._port} not connected.")

        try:
            raw = await asyncio.wait_for(reader.readline(), timeout)
        except asyncio.TimeoutError as e:
            raise ReadTimeoutError(f"No line received from {self._port} within {timeout}s.") from e
        except ValueError as e: # StreamReader line limit overrun
            raise ReadError(f"Oversized line received on {self._port}", original_exception=e) from e
        except (serial.SerialException, OSError) as e:
            self._connected = False
            raise ReadError(f"Serial read failed on {self._port}", original_exception=e) from e

        if not raw:
            # readline() returning empty bytes means EOF, the port went away
            self._connected = False
            raise ReadError(f"Serial port {self._port} closed remotely.")

        logger.debug(f"Serial received on {self._port}: {raw!r}")
        return raw.decode(ENCODING, errors='replace')

    async def write(self, text: str) -> None:
        """Writes ASCII text and waits for the output buffer to drain."""
        writer = self._writer
        if not self.is_connected() or writer is None:
            raise TransportError(f"Cannot write data: Serial port {self._port} not connected or writer is invalid.")

        data = text.encode(ENCODING, errors='replace')
        logger.debug(f"Serial sending on {self._port}: {data!r}")
        try:
            writer.write(data)
            await asyncio.wait_for(writer.drain(), self._write_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Write to serial port {self._port} timed out after {self._write_timeout}s")
            raise WriteError(f"Write to serial port {self._port} timed out", original_exception=e) from e
        except Exception as e:
            logger.error(f"Failed to write to serial port {self._port}: {e}")
            raise WriteError(f"Failed to write to serial port {self._port}", original_exception=e) from e
