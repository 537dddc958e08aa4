"""Tests for runtime.json discovery."""

import json
import os
from unittest.mock import patch

import pytest

from relaybridge import runtime
from relaybridge.runtime import RuntimeInfo, get_status, update_relay_status, write_runtime_info


@pytest.fixture(autouse=True)
def runtime_path(tmp_path):
    path = tmp_path / "runtime.json"
    with patch("relaybridge.runtime.get_runtime_path", return_value=path):
        yield path


class TestRuntimeInfo:

    def test_write_and_load(self, runtime_path):
        written = write_runtime_info(port=4321, version="1.2.3")

        data = json.loads(runtime_path.read_text())
        assert data["port"] == 4321
        assert data["pid"] == os.getpid()
        assert data["version"] == "1.2.3"
        assert data["relay_connected"] is False
        assert RuntimeInfo.load() == written

    def test_load_missing(self):
        assert RuntimeInfo.load() is None

    @pytest.mark.parametrize("content", ["not json", "{}", '{"port": 1}'])
    def test_load_invalid(self, runtime_path, content):
        runtime_path.write_text(content)
        assert RuntimeInfo.load() is None

    def test_clear(self, runtime_path):
        write_runtime_info(port=1, version="x")
        RuntimeInfo.clear()
        assert not runtime_path.exists()
        RuntimeInfo.clear()

    def test_update_relay_status(self):
        write_runtime_info(port=1, version="x")
        update_relay_status(True)
        assert RuntimeInfo.load().relay_connected is True

    def test_update_relay_status_without_file(self, runtime_path):
        update_relay_status(True)
        assert not runtime_path.exists()


class TestGetStatus:

    def test_not_running(self):
        assert get_status() == {"running": False}

    def test_stale_pid_is_cleaned_up(self, runtime_path):
        RuntimeInfo(port=1, pid=999_999_999, started_at="t", version="x").save()
        with patch.object(runtime.os, "kill", side_effect=ProcessLookupError):
            assert get_status() == {"running": False}
        assert not runtime_path.exists()

    def test_running_without_health_check(self):
        write_runtime_info(port=4321, relay_url="ws://relay:8765/mc", version="1.2.3")
        status = get_status(verify_health=False)
        assert status["running"] is True
        assert status["url"] == "http://127.0.0.1:4321"
        assert status["version"] == "1.2.3"
        assert status["relay_url"] == "ws://relay:8765/mc"
        assert status["relay_connected"] is False

    def test_health_overrides_file(self):
        write_runtime_info(port=4321, version="1.2.3")
        health = {"status": "ok", "relay_connected": True, "event_queue": 7}
        with patch("relaybridge.runtime._fetch_health", return_value=health) as fetch:
            status = get_status()
        fetch.assert_called_once_with("http://127.0.0.1:4321/health")
        assert status["relay_connected"] is True
        assert status["event_queue"] == 7
        assert "control_queue" not in status

    def test_unresponsive_health_keeps_file_state(self):
        write_runtime_info(port=4321, version="1.2.3")
        update_relay_status(True)
        with patch("relaybridge.runtime._fetch_health", return_value=None):
            assert get_status()["relay_connected"] is True
