"""card_reader - Asynchronous client for line-protocol card readers on a serial port."""

from .core import (
    CardReaderClient,
    ConnectionStatus,
    CardReaderError,
    TransportError,
    ConnectionError,
    SerialConnectionError,
    ReadError,
    ReadTimeoutError,
    WriteError
)
from .protocols import EventKind, LineEvent
from .transport import (
    SerialTransport,
    MockTransport
)

__version__ = "0.1.0"

__all__ = [
    'CardReaderClient',
    'ConnectionStatus',
    'CardReaderError',
    'TransportError',
    'ConnectionError',
    'SerialConnectionError',
    'ReadError',
    'ReadTimeoutError',
    'WriteError',
    'EventKind',
    'LineEvent',
    'SerialTransport',
    'MockTransport',
]
