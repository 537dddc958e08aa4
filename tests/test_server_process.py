"""Tests for the dedicated server subprocess host."""

import sys
import textwrap

import pytest

from relaybridge.host import HostError
from relaybridge.server_process import ServerProcessHost, strip_log_prefix

FAKE_SERVER = textwrap.dedent('''
    import sys

    def log(message):
        print("[12:00:00] [Server thread/INFO]: " + message, flush=True)

    log("Starting minecraft server version 1.20.1")
    log('Done (1.234s)! For help, type "help"')
    for raw in sys.stdin:
        command = raw.strip()
        if command == "stop":
            log("Stopping the server")
            break
        elif command == "list":
            log("There are 1 of a max of 20 players online:")
            log("Steve")
        elif command.startswith("say "):
            log("[Server] " + command[4:])
        elif command.startswith("whitelist add "):
            log("Added " + command[14:] + " to the whitelist")
        else:
            log("Unknown or incomplete command")
''')


@pytest.fixture
def parsed_host():
    """A host that is never started; lines are fed to it directly."""
    host = ServerProcessHost(["true"])
    yield host
    host.close_executor(wait=False)


@pytest.fixture
def server(tmp_path):
    script = tmp_path / "fake_server.py"
    script.write_text(FAKE_SERVER)
    host = ServerProcessHost([sys.executable, str(script)], cwd=tmp_path, response_window=2.0)
    host.start()
    yield host
    host.stop(timeout=5.0)


class TestLogParsing:

    @pytest.mark.parametrize("line, expected", [
        ("[12:00:00] [Server thread/INFO]: Steve joined the game", "Steve joined the game"),
        ("[12:00:00] [Server thread/INFO] [minecraft/DedicatedServer]: <Steve> hi", "<Steve> hi"),
        ("no prefix here", "no prefix here"),
    ])
    def test_strip_log_prefix(self, line, expected):
        assert strip_log_prefix(line) == expected

    def test_ready_line(self, parsed_host):
        parsed_host._handle_line('[12:00:00] [Server thread/INFO]: Done (3.2s)! For help, type "help"')
        assert parsed_host.wait_for_ready(0)
        # Not running, so still not ready for commands
        assert not parsed_host.is_ready()

    def test_players_tracked(self, parsed_host):
        parsed_host._handle_line("[12:00:00] [Server thread/INFO]: Steve joined the game")
        parsed_host._handle_line("[12:00:00] [Server thread/INFO]: Alex joined the game")
        parsed_host._handle_line("[12:00:00] [Server thread/INFO]: Steve left the game")
        assert parsed_host.players == ["Alex"]
        assert parsed_host.sample_status().player_count == 1
        assert parsed_host.sample_status().tps is None

    def test_chat_callback(self):
        said = []
        host = ServerProcessHost(["true"], on_chat=lambda name, text: said.append((name, text)))
        try:
            host._handle_line("[12:00:00] [Server thread/INFO]: <Steve> hello <there>")
            host._handle_line("[12:00:00] [Server thread/INFO]: Steve joined the game")
        finally:
            host.close_executor(wait=False)
        assert said == [("Steve", "hello <there>")]


class TestConsoleErrors:

    def test_not_running(self, parsed_host):
        with pytest.raises(HostError, match="server process not running"):
            parsed_host.broadcast("hello")

    @pytest.mark.parametrize("name", ["", "   ", "two words"])
    def test_invalid_player_name(self, parsed_host, name):
        with pytest.raises(HostError, match="Invalid player name"):
            parsed_host.kick(name)

    def test_multiline_rejected(self, parsed_host):
        with pytest.raises(HostError, match="single line"):
            parsed_host.broadcast("hi\nop Steve")

    def test_start_without_command(self):
        host = ServerProcessHost([])
        try:
            with pytest.raises(RuntimeError, match="No server command"):
                host.start()
        finally:
            host.close_executor(wait=False)


class TestSubprocess:
    """Against a small scripted console."""

    def test_becomes_ready(self, server):
        assert server.wait_for_ready(5.0)
        assert server.is_running()
        assert server.is_ready()

    def test_run_command_collects_output(self, server):
        assert server.wait_for_ready(5.0)
        assert server.run_command("list") == [
            "There are 1 of a max of 20 players online:",
            "Steve",
        ]

    def test_console_actions(self, server):
        assert server.wait_for_ready(5.0)
        server.broadcast("hello")
        server.add_to_whitelist(" Steve ")
        assert "[Server] again" in server.run_command("say again")

    def test_stop(self, server):
        assert server.wait_for_ready(5.0)
        server.stop(timeout=5.0)
        assert not server.is_running()
        assert not server.is_ready()
        with pytest.raises(HostError):
            server.broadcast("gone")

    def test_start_twice(self, server):
        with pytest.raises(RuntimeError, match="already running"):
            server.start()
