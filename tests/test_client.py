"""Tests for LoaderClient."""

import asyncio
import io

import pytest

from osmoload import LoaderClient
from osmoload.exceptions import (
    ConnectionClosedError,
    EndOfDataError,
    ProtocolError,
    QueryTimeoutError,
    TimeoutError,
    TransportError,
)
from osmoload.io import BytesSource, FileSink
from osmoload.protocol.codec import decode, encode
from osmoload.protocol.constants import Opcode
from osmoload.transport.mock import LoaderSimulator, MockTransport, ScriptedMockTransport


@pytest.fixture
def memory():
    """Memory image of the simulated device."""
    return bytes(i & 0xFF for i in range(0x2000))


@pytest.fixture
def simulator(memory):
    """Create a LoaderSimulator over the memory image."""
    return LoaderSimulator(memory)


@pytest.fixture
def mock_transport(simulator):
    """Create a MockTransport answered by the simulator."""
    transport = MockTransport()
    transport.set_response_callback(simulator)
    return transport


@pytest.fixture
def client(mock_transport):
    """Create a LoaderClient with mock transport."""
    return LoaderClient(mock_transport, timeout=0.2)


class TestLoaderClient:
    """Tests for LoaderClient commands."""

    @pytest.mark.asyncio
    async def test_ping(self, client, mock_transport):
        """Test ping sends PING and completes on the echo."""
        result = await client.ping()

        assert result.succeeded
        assert result.opcode == Opcode.PING
        assert result.reply.opcode == Opcode.PING
        mock_transport.assert_written(b"\x00\x01\x01")
        mock_transport.assert_write_count(1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method, opcode",
        [
            ("reset", Opcode.RESET),
            ("power_off", Opcode.POWEROFF),
            ("enter_rom_loader", Opcode.ENTER_ROM_LOADER),
            ("enter_flash_loader", Opcode.ENTER_FLASH_LOADER),
        ],
    )
    async def test_simple_commands(self, client, mock_transport, method, opcode):
        """Test each simple command sends its opcode."""
        result = await getattr(client, method)()
        assert result.opcode == opcode
        mock_transport.assert_written(encode(opcode))

    @pytest.mark.asyncio
    async def test_opens_transport(self, client, mock_transport):
        """Test execute opens a closed transport."""
        assert not mock_transport.is_open
        await client.ping()
        assert mock_transport.is_open

    @pytest.mark.asyncio
    async def test_jump(self, client):
        """Test jump returns the confirmed address."""
        result = await client.jump(0x00820000)
        assert result.reply.address == 0x00820000

    @pytest.mark.asyncio
    async def test_mem_get(self, client, memory):
        """Test mem_get returns the device memory."""
        data = await client.mem_get(0x100, 16)
        assert data == memory[0x100:0x110]

    @pytest.mark.asyncio
    async def test_mem_get_too_long(self, client, mock_transport):
        """Test mem_get refuses more than one chunk."""
        with pytest.raises(ValueError):
            await client.mem_get(0, 241)
        mock_transport.assert_write_count(0)

    @pytest.mark.asyncio
    async def test_mem_put(self, client, simulator):
        """Test mem_put writes into device memory."""
        result = await client.mem_put(0x40, b"\xca\xfe")
        assert result.reply.length == 2
        assert simulator.memory[0x40:0x42] == b"\xca\xfe"

    @pytest.mark.asyncio
    async def test_mem_dump_in_memory(self, client, mock_transport, memory):
        """Test a 500 byte dump takes three round trips."""
        result = await client.mem_dump(0x1000, 500)

        assert result.data == memory[0x1000:0x1000 + 500]
        assert result.bytes_transferred == 500
        mock_transport.assert_write_count(3)

    @pytest.mark.asyncio
    async def test_mem_dump_to_file(self, client, memory):
        """Test a dump streams into a file sink."""
        fh = io.BytesIO()
        result = await client.mem_dump(0, 0x400, FileSink(fh))
        assert fh.getvalue() == memory[:0x400]
        assert result.data is None

    @pytest.mark.asyncio
    async def test_mem_dump_zero_length(self, client, mock_transport):
        """Test an empty dump sends nothing."""
        result = await client.mem_dump(0, 0)
        assert result.data == b""
        mock_transport.assert_write_count(0)

    @pytest.mark.asyncio
    async def test_mem_load(self, client, simulator):
        """Test mem_load writes all chunks in order."""
        payload = bytes(range(200)) * 3
        result = await client.mem_load(0x200, payload)

        assert result.bytes_transferred == 600
        assert bytes(simulator.memory[0x200:0x200 + 600]) == payload
        assert [r.length for r in simulator.requests] == [240, 240, 120]

    @pytest.mark.asyncio
    async def test_mem_load_requires_length_for_source(self, client):
        """Test a DataSource needs an explicit length."""
        with pytest.raises(ValueError):
            await client.mem_load(0, BytesSource(b"abc"))

    @pytest.mark.asyncio
    async def test_mem_load_short_source(self, client, mock_transport):
        """Test a short source aborts before anything is sent."""
        with pytest.raises(EndOfDataError):
            await client.mem_load(0, BytesSource(b"abc"), 10)
        mock_transport.assert_write_count(0)

    @pytest.mark.asyncio
    async def test_progress_callback(self, mock_transport):
        """Test progress is reported per confirmed chunk."""
        progress = []
        client = LoaderClient(
            mock_transport, on_progress=lambda job: progress.append(job.transferred)
        )
        await client.mem_dump(0, 500)
        assert progress == [240, 480, 500]

    @pytest.mark.asyncio
    async def test_trace_callbacks(self, mock_transport):
        """Test every request and reply frame is traced."""
        requests = []
        replies = []
        client = LoaderClient(mock_transport, on_request=requests.append, on_reply=replies.append)
        await client.mem_get(0, 4)
        assert [decode(f, reply=False).opcode for f in requests] == [Opcode.MEM_READ]
        assert [decode(f).opcode for f in replies] == [Opcode.MEM_READ]

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_transport):
        """Test async context manager opens and closes the transport."""
        async with LoaderClient(mock_transport) as client:
            assert mock_transport.is_open
            await client.ping()
        assert not mock_transport.is_open

    def test_repr(self, client):
        """Test string representation."""
        assert "mock://loader" in repr(client)
        assert "max_chunk=240" in repr(client)

    def test_invalid_settings(self, mock_transport):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            LoaderClient(mock_transport, timeout=0)
        with pytest.raises(ValueError):
            LoaderClient(mock_transport, max_chunk=300)


class TestClientFailures:
    """Tests for failing commands."""

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test no reply raises QueryTimeoutError."""
        transport = MockTransport()
        client = LoaderClient(transport, timeout=0.05)

        with pytest.raises(QueryTimeoutError):
            await client.ping()
        transport.assert_write_count(1)

    @pytest.mark.asyncio
    async def test_timeout_mid_frame_keeps_alignment(self):
        """Test a reply cut off by a timeout does not desync the next command."""
        transport = MockTransport()
        client = LoaderClient(transport, timeout=0.05)
        transport.add_response(b"\x00\x01")

        with pytest.raises(QueryTimeoutError):
            await client.ping()

        transport.add_response(b"\x01" + encode(Opcode.RESET, reply=True))
        result = await client.reset()

        assert result.opcode == Opcode.RESET
        assert result.reply.opcode == Opcode.RESET
        transport.assert_written(encode(Opcode.RESET))

    @pytest.mark.asyncio
    async def test_late_body_then_matching_reply(self):
        """Test the late half of a timed-out reply is dropped, not parsed as a prefix."""
        transport = MockTransport()
        client = LoaderClient(transport, timeout=0.05)
        transport.add_response(b"\x00\x01")

        with pytest.raises(QueryTimeoutError):
            await client.ping()

        transport.add_response(b"\x01" + encode(Opcode.PING, reply=True))
        result = await client.ping()
        assert result.succeeded
        with pytest.raises(TimeoutError):
            await transport.read(1, timeout=0.01)

    @pytest.mark.asyncio
    async def test_transfer_stall_times_out(self, memory):
        """Test a transfer stalling mid-way times out instead of hanging."""
        transport = MockTransport()
        transport.set_response_callback(LoaderSimulator(memory, silent_after=1))
        client = LoaderClient(transport, timeout=0.05)

        with pytest.raises(QueryTimeoutError):
            await client.mem_dump(0, 500)
        transport.assert_write_count(2)
        assert client.session.job.transferred == 240

    @pytest.mark.asyncio
    async def test_mismatched_reply(self):
        """Test a reply for the wrong command raises ProtocolError."""
        transport = MockTransport()
        transport.set_response_callback(lambda data: encode(Opcode.RESET, reply=True))
        client = LoaderClient(transport)

        with pytest.raises(ProtocolError):
            await client.ping()

    @pytest.mark.asyncio
    async def test_unsolicited_init(self):
        """Test INIT before the reply is forwarded and the command completes."""
        notifications = []
        transport = MockTransport()
        transport.set_response_callback(
            lambda data: encode(Opcode.INIT, reply=True) + encode(Opcode.PING, reply=True)
        )
        client = LoaderClient(transport, on_notification=notifications.append)

        result = await client.ping()
        assert result.succeeded
        assert [m.opcode for m in notifications] == [Opcode.INIT]

    @pytest.mark.asyncio
    async def test_remote_close(self):
        """Test the broker closing the socket raises ConnectionClosedError."""
        transport = MockTransport()
        client = LoaderClient(transport, timeout=5.0)
        asyncio.get_running_loop().call_later(0.01, transport.close_remote)

        with pytest.raises(ConnectionClosedError):
            await client.ping()

    @pytest.mark.asyncio
    async def test_write_failure(self):
        """Test a failing write raises TransportError."""
        transport = MockTransport()
        await transport.open()
        transport.close_remote()
        client = LoaderClient(transport)

        with pytest.raises(TransportError):
            await client.ping()

    @pytest.mark.asyncio
    async def test_invalid_length_prefix(self):
        """Test a malformed frame on the stream fails the command."""
        transport = MockTransport()
        transport.set_response_callback(lambda data: b"\x00\x00")
        client = LoaderClient(transport)

        with pytest.raises(ProtocolError):
            await client.ping()


class TestScriptedExchanges:
    """Tests pinning the exact frames of multi-chunk transfers."""

    @pytest.mark.asyncio
    async def test_mem_dump_500_bytes(self, memory):
        """Test a 500 byte dump writes three MEM_READ requests in address order."""
        transport = ScriptedMockTransport()
        for address, length in [(0x1000, 240), (0x10F0, 240), (0x11E0, 20)]:
            transport.expect(
                encode(Opcode.MEM_READ, length=length, address=address),
                encode(
                    Opcode.MEM_READ,
                    address=address,
                    data=memory[address:address + length],
                    reply=True,
                ),
            )
        client = LoaderClient(transport)

        result = await client.mem_dump(0x1000, 500)

        transport.assert_script_done()
        assert result.data == memory[0x1000:0x1000 + 500]
        assert transport.written_data[1] == b"\x00\x06\x07\xf0\x00\x00\x10\xf0"

    @pytest.mark.asyncio
    async def test_mem_load_500_bytes(self):
        """Test a 500 byte load writes three MEM_WRITE requests carrying the payload."""
        payload = bytes((i * 7) & 0xFF for i in range(500))
        transport = ScriptedMockTransport()
        for offset, length in [(0, 240), (240, 240), (480, 20)]:
            transport.expect_echo(
                Opcode.MEM_WRITE,
                address=0x820000 + offset,
                data=payload[offset:offset + length],
            )
        client = LoaderClient(transport)

        result = await client.mem_load(0x820000, payload)

        transport.assert_script_done()
        assert result.bytes_transferred == 500
        assert transport.written_data[2][:8] == b"\x00\x1a\x08\x14\x00\x82\x01\xe0"

    @pytest.mark.asyncio
    async def test_init_between_chunks(self, memory):
        """Test an INIT arriving mid-transfer does not disturb the chunk sequence."""
        notifications = []
        transport = ScriptedMockTransport()
        transport.expect(
            encode(Opcode.MEM_READ, length=4, address=0),
            encode(Opcode.INIT, reply=True),
            encode(Opcode.MEM_READ, address=0, data=memory[:4], reply=True),
        )
        transport.expect(
            encode(Opcode.MEM_READ, length=2, address=4),
            encode(Opcode.MEM_READ, address=4, data=memory[4:6], reply=True),
        )
        client = LoaderClient(transport, max_chunk=4, on_notification=notifications.append)

        result = await client.mem_dump(0, 6)

        transport.assert_script_done()
        assert result.data == memory[:6]
        assert [m.opcode for m in notifications] == [Opcode.INIT]
