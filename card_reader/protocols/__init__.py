"""Protocol helpers for the card reader's line-oriented wire format."""

from .line_protocol import (
    EventKind,
    LineEvent,
    classify_line,
    encode_command,
    format_read_error,
    strip_line_ending,
)

__all__ = [
    'EventKind',
    'LineEvent',
    'classify_line',
    'encode_command',
    'format_read_error',
    'strip_line_ending',
]
