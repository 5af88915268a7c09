# card_reader/core/exceptions.py

"""Custom exceptions for the card_reader library."""


class CardReaderError(Exception):
    """Base exception class for all card_reader errors."""
    def __init__(self, message="An unspecified card reader error occurred."):
        super().__init__(message)


# --- Transport Layer Exceptions ---

class TransportError(CardReaderError):
    """
    Base exception for errors related to the communication transport layer
    (Serial, Mock). It often wraps a lower-level exception.
    """
    def __init__(self, message="Transport layer error.", original_exception: Exception | None = None):
        """
        Args:
            message: A description of the transport error.
            original_exception: The underlying exception that caused this error (e.g., from pyserial).
        """
        super().__init__(message)
        self.original_exception = original_exception

    def __str__(self):
        base_msg = super().__str__()
        if self.original_exception:
            orig_exc_type = type(self.original_exception).__name__
            orig_exc_msg = str(self.original_exception)
            return f"{base_msg} Original exception: [{orig_exc_type}] {orig_exc_msg}"
        return base_msg


class ConnectionError(TransportError):
    """
    Exception raised when opening the transport fails.
    This is more specific than a general TransportError during an open session.
    """
    def __init__(self, message="Failed to establish connection.", original_exception: Exception | None = None):
        super().__init__(message, original_exception)


class SerialConnectionError(ConnectionError):
    """
    Specific connection error related to the serial transport.
    Common reasons include:
    - Port does not exist.
    - Insufficient permissions to access the port.
    - Port is already in use by another application.
    - Card reader not plugged in.
    """
    def __init__(self, port: str | None = None, message="Serial connection error.", original_exception: Exception | None = None):
        msg = "Serial connection error"
        if port:
            msg += f" on port '{port}'"
        msg += f": {message}"
        super().__init__(msg, original_exception)
        self.port = port


class ReadError(TransportError):
    """Exception raised when reading a line from the transport fails."""
    def __init__(self, message="Failed to read data from transport.", original_exception: Exception | None = None):
        super().__init__(message, original_exception)


class ReadTimeoutError(ReadError):
    """
    Raised when no complete line arrives within the read timeout.
    The reader is idle most of the time, so this is an expected, recurring
    condition rather than a fault.
    """
    def __init__(self, message="The read operation timed out.", original_exception: Exception | None = None):
        super().__init__(message, original_exception)


class WriteError(TransportError):
    """Exception raised when writing data to the transport fails or times out."""
    def __init__(self, message="Failed to write data to transport.", original_exception: Exception | None = None):
        super().__init__(message, original_exception)
