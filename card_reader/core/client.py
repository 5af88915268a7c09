# card_reader/core/client.py

import asyncio
import logging
from typing import Optional, Any, Callable, Coroutine, List, Set, Union

from card_reader.core.dispatcher import EventDispatcher, EventCallback
from card_reader.core.exceptions import TransportError, ReadTimeoutError
from card_reader.core.status import ConnectionStatus
from card_reader.protocols.line_protocol import (
    EventKind, LineEvent, classify_line, encode_command, format_read_error
)
from card_reader.transport.base import BaseTransport
from card_reader.transport.serial_async import SerialTransport

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
DEFAULT_WARMUP_DELAY = 1.5   # Seconds the reader needs to boot after the port opens
DEFAULT_READ_TIMEOUT = 0.5
DEFAULT_WRITE_TIMEOUT = 0.5
ERROR_PAUSE = 0.2            # Pause after a failed read before the next attempt
CLOSE_TIMEOUT = 0.3          # How long close() waits for the reader task

TransportFactory = Callable[[str, int], BaseTransport]
StatusChangeCallback = Callable[[ConnectionStatus], Union[None, Coroutine[Any, Any, None]]]
ErrorCallback = Callable[[Exception], Union[None, Coroutine[Any, Any, None]]]


def serial_transport_factory(port: str, baudrate: int, write_timeout: float = DEFAULT_WRITE_TIMEOUT) -> BaseTransport:
    """Builds the default pyserial-asyncio transport for a port."""
    return SerialTransport({'port': port, 'baudrate': baudrate, 'write_timeout': write_timeout})


async def _call_maybe_async(callback: Callable, *args: Any) -> None:
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


class CardReaderClient:
    """
    Client for a card reader that talks a newline-delimited text protocol
    over a serial port.

    While open, a background task reads lines from the reader and publishes
    them to three kinds of subscribers: every raw line, status updates
    (``STAT:`` lines) and card identifiers (``IDM:`` lines). Commands are
    written with :meth:`send`, which reopens the last used port if the
    connection was closed in the meantime.

    ``open``, ``close`` and ``send`` are meant to be called from one event
    loop; ``open`` and ``close`` are serialized with a lock.
    """

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        error_pause: float = ERROR_PAUSE,
        close_timeout: float = CLOSE_TIMEOUT,
        warmup_delay: float = DEFAULT_WARMUP_DELAY,
    ):
        """
        Initializes the client. No port is opened until :meth:`open` is called.

        Args:
            transport_factory: Called as ``factory(port_name, baudrate)`` to build
                               the transport on every open. Defaults to a SerialTransport.
            read_timeout: Seconds a single line read may wait.
            write_timeout: Seconds a write may take to drain (default factory only).
            error_pause: Seconds the read loop pauses after a failed read.
            close_timeout: Seconds close() waits for the read loop to finish.
            warmup_delay: Default boot delay for open() and for the reopen done by send().
        """
        if transport_factory is None:
            def transport_factory(port: str, baudrate: int) -> BaseTransport:
                return serial_transport_factory(port, baudrate, write_timeout)
        self._transport_factory = transport_factory
        self._read_timeout = read_timeout
        self._error_pause = error_pause
        self._close_timeout = close_timeout
        self._warmup_delay = warmup_delay

        self._transport: Optional[BaseTransport] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._port_name: Optional[str] = None
        self._baudrate = DEFAULT_BAUDRATE

        self._dispatcher = EventDispatcher()
        self._state = ConnectionStatus.CLOSED
        self._status_change_callback: Optional[StatusChangeCallback] = None
        self._status_tasks: Set[asyncio.Task] = set()
        self._error_callbacks: List[ErrorCallback] = []
        self._connection_lock = asyncio.Lock()

    # --- State ---

    @property
    def is_open(self) -> bool:
        """True if a transport exists and reports itself connected."""
        return self._transport is not None and self._transport.is_connected()

    @property
    def status(self) -> ConnectionStatus:
        return self._state

    @property
    def port_name(self) -> Optional[str]:
        """The last port passed to open(); kept after close() for reopening."""
        return self._port_name

    @property
    def baudrate(self) -> int:
        return self._baudrate

    async def _update_status(self, new_status: ConnectionStatus) -> None:
        if self._state == new_status:
            return
        logger.info(f"Card reader status changed: {self._state.name} -> {new_status.name}")
        self._state = new_status
        if self._status_change_callback:
            # Runs outside the connection lock, so the callback may call open/close
            task = asyncio.create_task(self._run_status_callback(self._status_change_callback, new_status))
            self._status_tasks.add(task)
            task.add_done_callback(self._status_tasks.discard)

    async def _run_status_callback(self, callback: StatusChangeCallback, status: ConnectionStatus) -> None:
        try:
            await _call_maybe_async(callback, status)
        except Exception as e:
            logger.error(f"Error invoking status change callback: {e}")

    def set_status_change_callback(self, callback: Optional[StatusChangeCallback]) -> None:
        """
        Registers a callback notified of connection status changes.
        The callback can be sync or async. Each notification runs in its own
        task, scheduled in the order the changes happened.
        """
        if callback and not callable(callback):
            raise TypeError("Callback must be callable")
        self._status_change_callback = callback

    # --- Lifecycle ---

    async def open(self, port_name: str, baudrate: int = DEFAULT_BAUDRATE, warmup_delay: Optional[float] = None) -> None:
        """
        Opens the port, waits for the reader to boot and starts the read loop.
        Does nothing if the client is already open.

        Args:
            port_name: Serial port name ('COM3', '/dev/ttyACM0', or a pyserial URL).
            baudrate: Line speed; the reader uses 115200.
            warmup_delay: Seconds to wait after opening before traffic is expected;
                          the client default (1.5s unless configured) when omitted.

        Raises:
            ConnectionError: If the port cannot be opened. No state is kept.
        """
        async with self._connection_lock:
            if self.is_open:
                logger.debug(f"Open requested for {port_name} but {self._port_name} is already open.")
                return

            # A transport that dropped on its own still has a reader task attached
            if self._transport is not None or self._reader_task is not None:
                await self._teardown()

            self._port_name = port_name
            self._baudrate = baudrate
            await self._update_status(ConnectionStatus.OPENING)

            try:
                transport = self._transport_factory(port_name, baudrate)
                await transport.connect()
            except BaseException:
                await self._update_status(ConnectionStatus.CLOSED)
                raise

            if warmup_delay is None:
                warmup_delay = self._warmup_delay
            try:
                if warmup_delay > 0:
                    logger.debug(f"Waiting {warmup_delay}s for the reader on {port_name} to boot.")
                    await asyncio.sleep(warmup_delay)
            except BaseException:
                await self._disconnect_quietly(transport)
                await self._update_status(ConnectionStatus.CLOSED)
                raise

            self._transport = transport
            self._stop_event = asyncio.Event()
            self._reader_task = asyncio.create_task(
                self._read_loop(transport, self._stop_event),
                name=f"CardReaderClient.Rx[{port_name}]",
            )
            await self._update_status(ConnectionStatus.OPEN)
            logger.info(f"Card reader on {port_name} opened at {baudrate} baud.")

    async def close(self) -> None:
        """
        Stops the read loop and closes the port. Safe to call at any time;
        teardown problems are logged, never raised.
        """
        async with self._connection_lock:
            await self._teardown()

    async def dispose(self) -> None:
        await self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _teardown(self) -> None:
        if self._transport is None and self._reader_task is None:
            await self._update_status(ConnectionStatus.CLOSED)
            return

        await self._update_status(ConnectionStatus.CLOSING)

        try:
            if self._stop_event is not None:
                self._stop_event.set()
        except Exception as e:
            logger.warning(f"Error signalling the reader task to stop: {e}")

        task = self._reader_task
        # close() may be called from a subscriber running inside the read loop itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            try:
                done, _ = await asyncio.wait({task}, timeout=self._close_timeout)
                if not done:
                    logger.warning(f"Reader task did not stop within {self._close_timeout}s, cancelling it.")
                    task.cancel()
            except Exception as e:
                logger.warning(f"Error waiting for the reader task: {e}")

        if self._transport is not None:
            await self._disconnect_quietly(self._transport)

        self._transport = None
        self._reader_task = None
        self._stop_event = None
        await self._update_status(ConnectionStatus.CLOSED)
        logger.info(f"Card reader on {self._port_name} closed.")

    async def _disconnect_quietly(self, transport: BaseTransport) -> None:
        try:
            await transport.disconnect()
        except Exception as e:
            logger.warning(f"Error closing transport for {self._port_name}: {e}")

    # --- Read loop ---

    async def _read_loop(self, transport: BaseTransport, stop_event: asyncio.Event) -> None:
        """Reads, classifies and dispatches lines until the stop event is set."""
        logger.info(f"Reader loop started for {self._port_name}.")
        try:
            while not stop_event.is_set():
                if self._transport is None:
                    break
                try:
                    line = await transport.read_line(self._read_timeout)
                    events = classify_line(line)
                    if events:
                        logger.debug(f"Line from {self._port_name}: {events[0].payload!r}")
                    await self._dispatcher.dispatch_all(events)
                except ReadTimeoutError as e:
                    # The reader is idle most of the time
                    logger.debug(f"Read timeout on {self._port_name}: {e}")
                    await self._handle_read_error(e, stop_event)
                except Exception as e:
                    logger.warning(f"Read error on {self._port_name}: {e}")
                    await self._handle_read_error(e, stop_event)
        except asyncio.CancelledError:
            logger.info(f"Reader loop for {self._port_name} cancelled.")
            raise
        finally:
            logger.info(f"Reader loop for {self._port_name} stopped.")

    async def _handle_read_error(self, error: Exception, stop_event: asyncio.Event) -> None:
        await self._dispatcher.dispatch(LineEvent(EventKind.RAW, format_read_error(error)))
        try:
            await asyncio.wait_for(stop_event.wait(), self._error_pause)
        except asyncio.TimeoutError:
            pass # Pause elapsed without a stop request

    # --- Send path ---

    async def send(self, line: str) -> bool:
        """
        Sends one command line to the reader, reopening the last used port
        first if the connection is closed.

        Failures are not raised: they are logged, passed to the registered
        error callbacks, and reported through the return value.

        Args:
            line: Command text; surrounding whitespace is trimmed and a
                  newline terminator appended.

        Returns:
            True if the line was written, False otherwise.
        """
        try:
            if not self.is_open:
                if self._port_name is None:
                    logger.warning("Cannot send: the client has never been opened.")
                    return False
                logger.info(f"Port {self._port_name} is closed, reopening it to send {line.strip()!r}.")
                await self.open(self._port_name, self._baudrate)

            transport = self._transport
            if transport is None:
                raise TransportError("Cannot send: the client was closed while reopening.")
            await transport.write(encode_command(line))
            logger.debug(f"Sent {line.strip()!r} to {self._port_name}.")
            return True
        except Exception as e:
            logger.warning(f"Sending {line.strip()!r} to {self._port_name} failed: {e}")
            await self._report_error(e)
            return False

    # --- Subscriptions ---

    def register_raw_line_callback(self, callback: EventCallback) -> None:
        """Every non-empty line, plus ``RXERR:`` markers for failed reads."""
        self._dispatcher.register_callback(EventKind.RAW, callback)

    def unregister_raw_line_callback(self, callback: EventCallback) -> None:
        self._dispatcher.unregister_callback(EventKind.RAW, callback)

    def register_status_callback(self, callback: EventCallback) -> None:
        """Payload of ``STAT:`` lines, trimmed."""
        self._dispatcher.register_callback(EventKind.STATUS, callback)

    def unregister_status_callback(self, callback: EventCallback) -> None:
        self._dispatcher.unregister_callback(EventKind.STATUS, callback)

    def register_card_id_callback(self, callback: EventCallback) -> None:
        """Payload of ``IDM:`` lines, trimmed and uppercased."""
        self._dispatcher.register_callback(EventKind.CARD_ID, callback)

    def unregister_card_id_callback(self, callback: EventCallback) -> None:
        self._dispatcher.unregister_callback(EventKind.CARD_ID, callback)

    def unregister_callback_from_all(self, callback: EventCallback) -> None:
        self._dispatcher.unregister_callback_from_all(callback)

    def register_error_callback(self, callback: ErrorCallback) -> None:
        """Receives the exceptions that send() swallows. Sync or async."""
        if not callable(callback):
            raise TypeError("Callback must be callable")
        if callback not in self._error_callbacks:
            self._error_callbacks.append(callback)

    def unregister_error_callback(self, callback: ErrorCallback) -> None:
        try:
            self._error_callbacks.remove(callback)
        except ValueError:
            logger.warning(f"Error callback {getattr(callback, '__name__', repr(callback))} was not registered.")

    async def _report_error(self, error: Exception) -> None:
        for callback in list(self._error_callbacks):
            try:
                await _call_maybe_async(callback, error)
            except Exception as e:
                logger.error(f"Error in error callback {getattr(callback, '__name__', repr(callback))}: {e}")
