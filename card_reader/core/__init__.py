"""Core components of the card_reader library."""

from .client import CardReaderClient
from .dispatcher import EventDispatcher
from .status import ConnectionStatus
from .exceptions import (
    CardReaderError,
    TransportError,
    ConnectionError,
    SerialConnectionError,
    ReadError,
    ReadTimeoutError,
    WriteError
)

__all__ = [
    'CardReaderClient',
    'EventDispatcher',
    'ConnectionStatus',
    'CardReaderError',
    'TransportError',
    'ConnectionError',
    'SerialConnectionError',
    'ReadError',
    'ReadTimeoutError',
    'WriteError'
]
