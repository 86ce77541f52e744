"""Tests for the command line interface."""

import pytest

from osmoload import cli
from osmoload.protocol.codec import encode
from osmoload.protocol.constants import Opcode
from osmoload.transport import AsyncSerialTransport, UnixSocketTransport
from osmoload.transport.mock import LoaderSimulator, MockTransport


@pytest.fixture
def simulator():
    """Simulated loader with a patterned memory image."""
    return LoaderSimulator(bytes(i & 0xFF for i in range(0x2000)))


@pytest.fixture
def mock_transport(monkeypatch, simulator):
    """Route the CLI to a MockTransport answered by the simulator."""
    transport = MockTransport()
    transport.set_response_callback(simulator)
    monkeypatch.setattr(cli, "make_transport", lambda settings: transport)
    return transport


class TestParser:
    """Tests for argument parsing."""

    def test_memget_arguments(self):
        """Test addresses and lengths are parsed as hex."""
        args = cli.build_parser().parse_args(["memget", "0x1000", "10"])
        assert args.address == 0x1000
        assert args.length == 0x10

    def test_simple_command_opcode(self):
        """Test simple subcommands carry their opcode."""
        args = cli.build_parser().parse_args(["jumprom"])
        assert args.opcode == Opcode.ENTER_ROM_LOADER

    @pytest.mark.parametrize(
        "argv",
        [
            [],
            ["bogus"],
            ["memget", "zz", "10"],
            ["memput", "0", "abc"],
            ["-d", "x", "ping"],
            ["--timeout", "0", "ping"],
            ["--chunk-size", "300", "ping"],
            ["-l", "/tmp/a", "-s", "socket://b:1", "ping"],
        ],
    )
    def test_usage_errors_exit_2(self, argv):
        """Test usage errors exit with status 2."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        assert exc_info.value.code == 2

    def test_make_transport(self):
        """Test the endpoint option selects the transport."""
        settings = cli.LoaderSettings(socket_path="/tmp/x")
        assert isinstance(cli.make_transport(settings), UnixSocketTransport)
        settings = cli.LoaderSettings(serial_url="socket://localhost:1")
        transport = cli.make_transport(settings)
        assert isinstance(transport, AsyncSerialTransport)
        assert transport.endpoint == "socket://localhost:1"


class TestCommands:
    """Tests for running commands end to end against a simulated loader."""

    @pytest.mark.parametrize(
        "command, message",
        [
            ("ping", "Received pong."),
            ("reset", "Reset confirmed."),
            ("off", "Poweroff confirmed."),
            ("jumprom", "Jump to ROM loader confirmed."),
            ("jumpflash", "Jump to flash loader confirmed."),
        ],
    )
    def test_simple_commands(self, mock_transport, capsys, command, message):
        """Test simple commands print their confirmation."""
        assert cli.main([command]) == 0
        assert capsys.readouterr().out == message + "\n"

    def test_jump(self, mock_transport, capsys):
        """Test jump prints the confirmed address."""
        assert cli.main(["jump", "820000"]) == 0
        assert capsys.readouterr().out == "Confirmed jump to 0x820000.\n"

    def test_memget(self, mock_transport, capsys):
        """Test memget prints a hex dump."""
        assert cli.main(["memget", "0x41", "4"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "Received memory dump of 4 bytes at 0x41:"
        assert out[1] == "41424344".ljust(71) + " ABCD"

    def test_memget_too_many_bytes(self, mock_transport, capsys):
        """Test memget above one chunk fails."""
        assert cli.main(["memget", "0", "f1"]) == 2
        assert "Too many bytes" in capsys.readouterr().out

    def test_memput(self, mock_transport, simulator, capsys):
        """Test memput writes and confirms."""
        assert cli.main(["memput", "0x10", "cafe"]) == 0
        assert capsys.readouterr().out == "Confirmed memory write of 2 bytes at 0x10.\n"
        assert simulator.memory[0x10:0x12] == b"\xca\xfe"

    def test_memput_too_long(self, mock_transport, capsys):
        """Test memput refuses more than one chunk."""
        assert cli.main(["memput", "0", "00" * 241]) == 2
        assert "Value too long for single message" in capsys.readouterr().out

    def test_memdump(self, mock_transport, simulator, tmp_path, capsys):
        """Test memdump writes the file with progress dots."""
        path = tmp_path / "dump.bin"
        assert cli.main(["memdump", "1000", "1f4", str(path)]) == 0
        assert path.read_bytes() == bytes(simulator.memory[0x1000:0x1000 + 500])
        out = capsys.readouterr().out
        assert out.startswith(f"Dumping 500 bytes of memory at 0x1000 to file {path}\n")
        assert out.endswith("...done.\n")

    def test_memload(self, mock_transport, simulator, tmp_path, capsys):
        """Test memload writes the file contents to memory."""
        path = tmp_path / "image.bin"
        payload = bytes(range(256)) * 2
        path.write_bytes(payload)
        assert cli.main(["memload", "800", str(path)]) == 0
        assert bytes(simulator.memory[0x800:0x800 + 512]) == payload
        assert capsys.readouterr().out.endswith("...done.\n")

    def test_memload_missing_file(self, mock_transport, tmp_path, capsys):
        """Test a missing input file fails with status 2."""
        path = tmp_path / "missing.bin"
        assert cli.main(["memload", "0", str(path)]) == 2
        assert "Could not open" in capsys.readouterr().out

    def test_trace_requests_and_replies(self, mock_transport, capsys):
        """Test -d tr dumps both directions."""
        assert cli.main(["-d", "tr", "ping"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "Sending 1 bytes:"
        assert out[1].startswith("01")
        assert out[2] == "Received 1 bytes:"
        assert out[-1] == "Received pong."

    def test_loader_started_notification(self, monkeypatch, capsys):
        """Test INIT is printed when the loader announces itself."""
        transport = MockTransport()
        transport.set_response_callback(
            lambda data: encode(Opcode.INIT, reply=True) + encode(Opcode.PING, reply=True)
        )
        monkeypatch.setattr(cli, "make_transport", lambda settings: transport)
        assert cli.main(["ping"]) == 0
        assert capsys.readouterr().out == "Loader has been started\nReceived pong.\n"

    def test_timeout(self, monkeypatch, capsys):
        """Test an unanswered query exits with status 2."""
        transport = MockTransport()
        monkeypatch.setattr(cli, "make_transport", lambda settings: transport)
        assert cli.main(["--timeout", "0.05", "ping"]) == 2
        assert capsys.readouterr().out == "Query timed out.\n"

    def test_protocol_error(self, monkeypatch, capsys):
        """Test a mismatched reply exits with status 2."""
        transport = MockTransport()
        transport.set_response_callback(lambda data: encode(Opcode.RESET, reply=True))
        monkeypatch.setattr(cli, "make_transport", lambda settings: transport)
        assert cli.main(["ping"]) == 2
        assert "Error:" in capsys.readouterr().err

    def test_broker_unreachable(self, tmp_path, capsys):
        """Test a missing broker socket exits with status 1."""
        path = tmp_path / "no-broker"
        assert cli.main(["-l", str(path), "ping"]) == 1
        assert f"Failed to connect to '{path}'." in capsys.readouterr().err
