# tests/core/test_client.py

import asyncio
import logging
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from card_reader.core.client import CardReaderClient
from card_reader.core.exceptions import ReadError, ReadTimeoutError, SerialConnectionError, WriteError
from card_reader.core.status import ConnectionStatus
from card_reader.transport.mock import MockTransport

logger = logging.getLogger(__name__)

PORT = "COM7"

# --- Helpers ---

async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Polls ``predicate`` until it is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


class EventRecorder:
    """Subscribes to all three channels and records (kind, payload) in arrival order."""

    def __init__(self, client: CardReaderClient):
        self.events = []
        client.register_raw_line_callback(self.on_raw)
        client.register_status_callback(self.on_status)
        client.register_card_id_callback(self.on_card_id)

    def on_raw(self, text):
        self.events.append(("raw", text))

    async def on_status(self, code):
        self.events.append(("status", code))

    def on_card_id(self, card_id):
        self.events.append(("card_id", card_id))

    def without_read_errors(self):
        """Events minus the RXERR markers produced by idle read timeouts."""
        return [e for e in self.events if not (e[0] == "raw" and e[1].startswith("RXERR:"))]

# --- Fixtures ---

@pytest.fixture
def mock_transport() -> MockTransport:
    return MockTransport(name="ClientTest")

@pytest.fixture
def factory(mock_transport: MockTransport) -> MagicMock:
    return MagicMock(return_value=mock_transport)

@pytest.fixture
def client(factory: MagicMock) -> CardReaderClient:
    # Short read timeout keeps close() fast; no boot delay for the mock
    return CardReaderClient(transport_factory=factory, read_timeout=0.05, warmup_delay=0)

# --- Line classification through the read loop ---

@pytest.mark.asyncio
async def test_status_line_produces_raw_then_status(client, mock_transport):
    recorder = EventRecorder(client)
    async with client:
        await client.open(PORT)
        mock_transport.add_line("STAT:Ready\r\n")
        await wait_until(lambda: len(recorder.without_read_errors()) >= 2)

    assert recorder.without_read_errors() == [("raw", "STAT:Ready"), ("status", "Ready")]

@pytest.mark.asyncio
async def test_card_id_line_is_uppercased(client, mock_transport):
    recorder = EventRecorder(client)
    async with client:
        await client.open(PORT)
        mock_transport.add_line("idm: 0102ab\n")
        await wait_until(lambda: len(recorder.without_read_errors()) >= 2)

    assert recorder.without_read_errors() == [("raw", "idm: 0102ab"), ("card_id", "0102AB")]

@pytest.mark.asyncio
async def test_empty_lines_produce_no_events(client, mock_transport):
    recorder = EventRecorder(client)
    async with client:
        await client.open(PORT)
        mock_transport.add_lines(["\r\n", "\n", "BOOT OK\n"])
        await wait_until(lambda: recorder.without_read_errors())

    assert recorder.without_read_errors() == [("raw", "BOOT OK")]

@pytest.mark.asyncio
async def test_events_follow_read_order(client, mock_transport):
    recorder = EventRecorder(client)
    async with client:
        await client.open(PORT)
        mock_transport.add_lines(["STAT:Waiting\n", "IDM:01aa\n", "hello\n", "stat:Done\n"])
        await wait_until(lambda: len(recorder.without_read_errors()) >= 7)

    assert recorder.without_read_errors() == [
        ("raw", "STAT:Waiting"), ("status", "Waiting"),
        ("raw", "IDM:01aa"), ("card_id", "01AA"),
        ("raw", "hello"),
        ("raw", "stat:Done"), ("status", "Done"),
    ]

@pytest.mark.asyncio
async def test_read_timeout_is_reported_and_loop_continues(client, mock_transport):
    recorder = EventRecorder(client)
    mock_transport.add_read_error(ReadTimeoutError("The read operation timed out."))
    mock_transport.add_line("STAT:Ready\n")

    async with client:
        await client.open(PORT)
        await wait_until(lambda: ("status", "Ready") in recorder.events)

    assert recorder.events[0] == ("raw", "RXERR:The read operation timed out.")
    assert recorder.events[1:3] == [("raw", "STAT:Ready"), ("status", "Ready")]
    # The loop pauses after a failed read before trying again
    assert mock_transport.read_attempts[1] - mock_transport.read_attempts[0] >= 0.19

@pytest.mark.asyncio
async def test_idle_reader_reports_timeouts_without_crashing(client, mock_transport):
    recorder = EventRecorder(client)
    async with client:
        await client.open(PORT)
        await wait_until(lambda: len(recorder.events) >= 2, timeout=2.0)
        assert client.is_open
        mock_transport.add_line("IDM:fe\n")
        await wait_until(lambda: ("card_id", "FE") in recorder.events, timeout=2.0)

    assert all(text.startswith("RXERR:") for kind, text in recorder.events[:2])

@pytest.mark.asyncio
async def test_read_error_other_than_timeout_is_reported(client, mock_transport):
    recorder = EventRecorder(client)
    mock_transport.add_read_error(ReadError("Serial read failed"))
    async with client:
        await client.open(PORT)
        await wait_until(lambda: recorder.events)
    assert recorder.events[0] == ("raw", "RXERR:Serial read failed")

@pytest.mark.asyncio
async def test_failing_subscriber_does_not_stop_the_loop(client, mock_transport):
    def broken(_):
        raise RuntimeError("display crashed")
    client.register_status_callback(broken)
    recorder = EventRecorder(client)

    async with client:
        await client.open(PORT)
        mock_transport.add_lines(["STAT:one\n", "STAT:two\n"])
        await wait_until(lambda: ("status", "two") in recorder.events)

    assert ("status", "one") in recorder.events

@pytest.mark.asyncio
async def test_unregistered_callback_receives_nothing(client, mock_transport):
    received = []
    client.register_card_id_callback(received.append)
    client.unregister_card_id_callback(received.append)
    recorder = EventRecorder(client)

    async with client:
        await client.open(PORT)
        mock_transport.add_line("IDM:01\n")
        await wait_until(lambda: ("card_id", "01") in recorder.events)

    assert received == []

# --- Lifecycle ---

@pytest.mark.asyncio
async def test_open_configures_transport(client, factory, mock_transport):
    await client.open(PORT, baudrate=9600)
    try:
        factory.assert_called_once_with(PORT, 9600)
        assert client.is_open
        assert client.status == ConnectionStatus.OPEN
        assert client.port_name == PORT
        assert client.baudrate == 9600
    finally:
        await client.close()

@pytest.mark.asyncio
async def test_open_is_idempotent(client, factory, mock_transport):
    async with client:
        await client.open(PORT)
        await client.open(PORT)
        await client.open("COM9")
        assert factory.call_count == 1
        assert mock_transport.connect_count == 1
        assert client.port_name == PORT

@pytest.mark.asyncio
async def test_open_waits_for_warmup(factory):
    client = CardReaderClient(transport_factory=factory, read_timeout=0.05)
    started = time.monotonic()
    async with client:
        await client.open(PORT, warmup_delay=0.15)
        assert time.monotonic() - started >= 0.14
        assert client.is_open

@pytest.mark.asyncio
async def test_open_failure_propagates_and_leaves_no_state(client, mock_transport):
    mock_transport.fail_next_connect()

    with pytest.raises(SerialConnectionError):
        await client.open(PORT)

    assert not client.is_open
    assert client.status == ConnectionStatus.CLOSED
    assert client._reader_task is None
    assert client._transport is None
    # The port is still remembered for a later send()
    assert client.port_name == PORT

@pytest.mark.asyncio
async def test_cancelled_warmup_closes_the_transport(factory, mock_transport):
    client = CardReaderClient(transport_factory=factory, read_timeout=0.05)
    task = asyncio.create_task(client.open(PORT, warmup_delay=5))
    await wait_until(lambda: mock_transport.is_connected())
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not mock_transport.is_connected()
    assert client._reader_task is None
    assert client.status == ConnectionStatus.CLOSED

@pytest.mark.asyncio
async def test_close_before_open_and_twice(client, mock_transport):
    await client.close()
    assert client.status == ConnectionStatus.CLOSED

    await client.open(PORT)
    await client.close()
    await client.close()

    assert not client.is_open
    assert client.status == ConnectionStatus.CLOSED
    assert mock_transport.disconnect_count == 1

@pytest.mark.asyncio
async def test_close_stops_reader_task_and_clears_state(client, mock_transport):
    await client.open(PORT)
    task = client._reader_task
    assert task is not None and not task.done()

    await client.close()

    assert task.done()
    assert client._transport is None
    assert client._reader_task is None
    assert client._stop_event is None
    assert not mock_transport.is_connected()

@pytest.mark.asyncio
async def test_close_cancels_a_reader_stuck_past_the_budget(factory, mock_transport):
    # Read timeout far beyond the close budget: the pending read never returns in time
    client = CardReaderClient(transport_factory=factory, read_timeout=10, warmup_delay=0)
    await client.open(PORT)
    task = client._reader_task
    await asyncio.sleep(0.02)

    started = time.monotonic()
    await client.close()
    assert time.monotonic() - started < 1.0

    await wait_until(task.done)
    assert client.status == ConnectionStatus.CLOSED

@pytest.mark.asyncio
async def test_close_survives_transport_close_failure(client, mock_transport):
    await client.open(PORT)
    mock_transport.fail_next_disconnect()

    await client.close()

    assert client._transport is None
    assert client._reader_task is None
    assert client.status == ConnectionStatus.CLOSED

@pytest.mark.asyncio
async def test_reopen_after_close_resumes_events(client, factory, mock_transport):
    recorder = EventRecorder(client)
    await client.open(PORT)
    await client.close()

    await client.open(PORT)
    try:
        mock_transport.add_line("STAT:Back\n")
        await wait_until(lambda: ("status", "Back") in recorder.events)
    finally:
        await client.close()

    assert mock_transport.connect_count == 2
    assert factory.call_count == 2

@pytest.mark.asyncio
async def test_close_from_inside_a_callback(client, mock_transport):
    closed = asyncio.Event()

    async def close_on_card(_):
        await client.close()
        closed.set()

    client.register_card_id_callback(close_on_card)
    await client.open(PORT)
    mock_transport.add_line("IDM:01\n")

    await asyncio.wait_for(closed.wait(), 1.0)
    assert client.status == ConnectionStatus.CLOSED
    assert not client.is_open

@pytest.mark.asyncio
async def test_status_change_callback_sequence(client):
    states = []
    client.set_status_change_callback(states.append)

    await client.open(PORT)
    await client.close()

    await wait_until(lambda: len(states) == 4)
    assert states == [
        ConnectionStatus.OPENING, ConnectionStatus.OPEN,
        ConnectionStatus.CLOSING, ConnectionStatus.CLOSED,
    ]

@pytest.mark.asyncio
async def test_status_callback_can_close_the_client(client, mock_transport):
    async def on_status(status):
        if status == ConnectionStatus.OPEN:
            await client.close()

    client.set_status_change_callback(on_status)
    await asyncio.wait_for(client.open(PORT), timeout=1.0)

    await wait_until(lambda: client.status == ConnectionStatus.CLOSED)
    assert not client.is_open
    assert mock_transport.disconnect_count == 1

@pytest.mark.asyncio
async def test_failing_status_callback_does_not_break_open(client):
    calls = []

    def on_status(status):
        calls.append(status)
        raise RuntimeError("handler bug")

    client.set_status_change_callback(on_status)
    async with client:
        await client.open(PORT)
        assert client.is_open
    await wait_until(lambda: len(calls) == 4)

@pytest.mark.asyncio
async def test_dropped_transport_is_replaced_on_open(client, mock_transport):
    await client.open(PORT)
    old_task = client._reader_task
    # The device disappears: transport closes underneath the client
    await mock_transport.disconnect()
    assert not client.is_open

    await client.open(PORT)
    try:
        assert client.is_open
        assert client._reader_task is not old_task
        assert old_task.done()
    finally:
        await client.close()

# --- Send path ---

@pytest.mark.asyncio
async def test_send_when_open_writes_trimmed_line(client, mock_transport):
    async with client:
        await client.open(PORT)
        assert await client.send("  LED ON \r\n") is True
    assert mock_transport.get_all_sent_data() == ["LED ON\n"]

@pytest.mark.asyncio
async def test_send_reopens_closed_connection(client, factory, mock_transport):
    await client.open(PORT)
    await client.close()
    assert not client.is_open

    try:
        assert await client.send("PING") is True
        assert client.is_open
        assert factory.call_args.args == (PORT, 115200)
        assert mock_transport.get_all_sent_data() == ["PING\n"]
    finally:
        await client.close()

@pytest.mark.asyncio
async def test_send_reopens_after_serial_port_drops():
    def stream_pair():
        reader = asyncio.StreamReader()
        writer = MagicMock()
        writer.drain = AsyncMock()
        writer.wait_closed = AsyncMock()
        writer.is_closing.return_value = False
        return reader, writer

    first, second = stream_pair(), stream_pair()
    open_mock = AsyncMock(side_effect=[first, second])
    client = CardReaderClient(read_timeout=0.05, warmup_delay=0)

    with patch('serial_asyncio.open_serial_connection', open_mock):
        await client.open(PORT)
        assert client.is_open

        # USB unplug: the stream ends underneath the read loop
        first[0].feed_eof()
        await wait_until(lambda: not client.is_open)

        try:
            assert await client.send("PING") is True
            assert client.is_open
            assert open_mock.await_count == 2
            first[1].close.assert_called_once()
            second[1].write.assert_called_once_with(b"PING\n")
        finally:
            await client.close()

@pytest.mark.asyncio
async def test_send_before_any_open_does_nothing(client, factory):
    assert await client.send("PING") is False
    factory.assert_not_called()
    assert not client.is_open

@pytest.mark.asyncio
async def test_send_swallows_reopen_failure(client, mock_transport):
    errors = []
    client.register_error_callback(errors.append)
    await client.open(PORT)
    await client.close()
    mock_transport.fail_next_connect()

    assert await client.send("PING") is False

    assert not client.is_open
    assert len(errors) == 1
    assert isinstance(errors[0], SerialConnectionError)

@pytest.mark.asyncio
async def test_send_swallows_write_failure(client, mock_transport):
    on_error = AsyncMock()
    client.register_error_callback(on_error)
    async with client:
        await client.open(PORT)
        mock_transport.fail_next_write()

        assert await client.send("PING") is False
        assert client.is_open

    on_error.assert_awaited_once()
    assert isinstance(on_error.await_args.args[0], WriteError)

@pytest.mark.asyncio
async def test_failing_error_callback_is_contained(client, mock_transport):
    def broken(_):
        raise RuntimeError("logger down")
    client.register_error_callback(broken)
    async with client:
        await client.open(PORT)
        mock_transport.fail_next_write()
        assert await client.send("PING") is False

def test_register_error_callback_rejects_non_callable(client):
    with pytest.raises(TypeError):
        client.register_error_callback(None)
