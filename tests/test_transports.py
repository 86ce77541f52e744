"""Tests for the stream transports."""

import asyncio
import sys

import pytest

from osmoload import LoaderClient
from osmoload.exceptions import (
    ConnectionClosedError,
    ConnectionError,
    TimeoutError,
    TransportError,
)
from osmoload.protocol.codec import encode
from osmoload.protocol.constants import Opcode
from osmoload.transport import AsyncSerialTransport, UnixSocketTransport
from osmoload.transport.mock import LoaderSimulator

unix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires unix sockets")


@pytest.fixture
def socket_path(tmp_path):
    """Path for a temporary broker socket."""
    return str(tmp_path / "loader.sock")


async def start_broker(path, simulator=None, close_after_request=False):
    """Start a unix socket server answering like the loader."""
    simulator = simulator or LoaderSimulator()

    async def handle(reader, writer):
        try:
            while True:
                data = await reader.read(1024)
                if not data or close_after_request:
                    break
                reply = simulator(data)
                if reply:
                    writer.write(reply)
                    await writer.drain()
        finally:
            writer.close()

    return await asyncio.start_unix_server(handle, path=path)


@unix_only
class TestUnixSocketTransport:
    """Tests for UnixSocketTransport against a local server."""

    @pytest.mark.asyncio
    async def test_connect_missing_socket(self, socket_path):
        """Test a missing socket raises ConnectionError."""
        transport = UnixSocketTransport(socket_path)
        with pytest.raises(ConnectionError):
            await transport.open()
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_not_open(self, socket_path):
        """Test I/O on a closed transport raises TransportError."""
        transport = UnixSocketTransport(socket_path)
        with pytest.raises(TransportError):
            await transport.write(b"\x00\x01\x02")
        with pytest.raises(TransportError):
            await transport.read(1)

    @pytest.mark.asyncio
    async def test_frame_exchange(self, socket_path):
        """Test a request/reply round trip over the socket."""
        server = await start_broker(socket_path)
        async with server:
            async with UnixSocketTransport(socket_path) as transport:
                assert transport.is_open
                await transport.write(encode(Opcode.PING))
                assert await transport.read_frame(timeout=1.0) == encode(Opcode.PING, reply=True)
            assert not transport.is_open

    @pytest.mark.asyncio
    async def test_read_timeout(self, socket_path):
        """Test a read without data times out."""
        server = await start_broker(socket_path)
        async with server:
            async with UnixSocketTransport(socket_path) as transport:
                with pytest.raises(TimeoutError):
                    await transport.read(2, timeout=0.05)

    @pytest.mark.asyncio
    async def test_peer_close(self, socket_path):
        """Test the server closing surfaces as ConnectionClosedError."""
        server = await start_broker(socket_path, close_after_request=True)
        async with server:
            async with UnixSocketTransport(socket_path) as transport:
                await transport.write(encode(Opcode.PING))
                with pytest.raises(ConnectionClosedError):
                    await transport.read_frame(timeout=1.0)

    @pytest.mark.asyncio
    async def test_client_transfer(self, socket_path):
        """Test a chunked dump through a real socket."""
        memory = bytes(i & 0xFF for i in range(0x1000))
        server = await start_broker(socket_path, LoaderSimulator(memory))
        async with server:
            async with LoaderClient(UnixSocketTransport(socket_path)) as client:
                result = await client.mem_dump(0x100, 700)
        assert result.data == memory[0x100:0x100 + 700]

    def test_repr(self, socket_path):
        """Test string representation."""
        assert "closed" in repr(UnixSocketTransport(socket_path))


class TestAsyncSerialTransport:
    """Tests for AsyncSerialTransport without hardware."""

    def test_properties(self):
        """Test endpoint and baud rate."""
        transport = AsyncSerialTransport("socket://localhost:4242", baudrate=9600)
        assert transport.endpoint == "socket://localhost:4242"
        assert transport.baudrate == 9600
        assert not transport.is_open
        assert "9600" in repr(transport)

    @pytest.mark.asyncio
    async def test_open_missing_device(self, tmp_path):
        """Test a missing device raises ConnectionError."""
        transport = AsyncSerialTransport(str(tmp_path / "ttyMissing"))
        with pytest.raises(ConnectionError):
            await transport.open()

    @pytest.mark.asyncio
    async def test_not_open(self):
        """Test I/O on a closed port raises TransportError."""
        transport = AsyncSerialTransport("/dev/null")
        with pytest.raises(TransportError):
            await transport.write(b"\x00")
        with pytest.raises(TransportError):
            await transport.read(1)
        transport.discard_buffers()
        await transport.close()
