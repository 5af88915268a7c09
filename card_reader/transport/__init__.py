"""Transport implementations for the card_reader library."""

from .base import BaseTransport
from .serial_async import SerialTransport
from .mock import MockTransport

__all__ = [
    'BaseTransport',
    'SerialTransport',
    'MockTransport',
]
