# card_reader/core/status.py

from enum import Enum, auto

class ConnectionStatus(Enum):
    """Represents the connection state of the card reader client."""
    CLOSED = auto()
    OPENING = auto()
    OPEN = auto()
    CLOSING = auto()

    def __str__(self):
        return self.name
