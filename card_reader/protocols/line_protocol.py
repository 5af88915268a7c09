# card_reader/protocols/line_protocol.py

"""
Line framing and classification for the card reader's text protocol.

The reader speaks newline-delimited ASCII. Two prefixes carry meaning:

    STAT:<text>   status update, payload trimmed
    IDM:<text>    card identifier, payload trimmed and uppercased

Every other non-empty line is passed through as a raw line only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

# --- Wire constants ---
ENCODING = 'ascii'
LINE_TERMINATOR = '\n'
STATUS_PREFIX = 'STAT:'
CARD_ID_PREFIX = 'IDM:'
READ_ERROR_PREFIX = 'RXERR:'


class EventKind(Enum):
    """Kinds of notification derived from a received line."""
    RAW = 'raw'
    STATUS = 'status'
    CARD_ID = 'card_id'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class LineEvent:
    kind: EventKind
    payload: str


def strip_line_ending(line: str) -> str:
    """Removes any trailing CR/LF characters from a received line."""
    return line.rstrip('\r\n')


def _has_prefix(line: str, prefix: str) -> bool:
    return line[:len(prefix)].upper() == prefix


def classify_line(line: str) -> List[LineEvent]:
    """
    Turns one received line into the ordered list of events it produces.

    The raw event always comes first; at most one derived event (status or
    card identifier) follows it.

    Args:
        line: The line as read from the transport, CR/LF may still be attached.

    Returns:
        An empty list for a line that is empty after stripping CR/LF,
        otherwise ``[RAW]`` or ``[RAW, STATUS]`` or ``[RAW, CARD_ID]``.
    """
    line = strip_line_ending(line)
    if not line:
        return []

    events = [LineEvent(EventKind.RAW, line)]

    if _has_prefix(line, STATUS_PREFIX):
        status = line[len(STATUS_PREFIX):].strip()
        if status:
            events.append(LineEvent(EventKind.STATUS, status))
        return events

    if _has_prefix(line, CARD_ID_PREFIX):
        card_id = line[len(CARD_ID_PREFIX):].strip().upper()
        if card_id:
            events.append(LineEvent(EventKind.CARD_ID, card_id))
        return events

    return events


def encode_command(line: str) -> str:
    """Trims a command and terminates it with a single newline."""
    return line.strip() + LINE_TERMINATOR


def format_read_error(error: BaseException) -> str:
    """Builds the raw marker line reported to subscribers for a failed read."""
    return f"{READ_ERROR_PREFIX}{error}"
