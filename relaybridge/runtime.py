"""Discovery file for a running bridge.

While the health server is up, ``runtime.json`` in the data directory records
where it listens and whether the relay link is connected, so
``relaybridge status`` and local scripts can find the bridge without
configuration.
"""

import json
import os
import urllib.request
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional

from .config import get_data_dir

HEALTH_TIMEOUT = 2.0


@lru_cache(maxsize=1)
def get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version
    try:
        return version("relaybridge")
    except PackageNotFoundError:
        return "0.0.0"


def get_runtime_path() -> Path:
    return get_data_dir() / "runtime.json"


@dataclass
class RuntimeInfo:
    """Contents of runtime.json.

    Attributes:
        port: Health server port on 127.0.0.1
        pid: Bridge process ID
        started_at: ISO-8601 UTC start time
        version: relaybridge version
        relay_url: Relay endpoint the bridge connects to
        relay_connected: Last known relay link state
    """

    port: int
    pid: int
    started_at: str
    version: str
    relay_url: str = ""
    relay_connected: bool = False

    def save(self) -> None:
        get_runtime_path().write_text(json.dumps(asdict(self), indent=2))

    def set_relay_connected(self, connected: bool) -> None:
        self.relay_connected = connected
        self.save()

    @classmethod
    def load(cls) -> Optional["RuntimeInfo"]:
        """Read runtime.json. Returns None if it is missing or unreadable."""
        path = get_runtime_path()
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
            known = {f.name for f in fields(cls)}
            return cls(**{k: v for k, v in data.items() if k in known})
        except (OSError, json.JSONDecodeError, AttributeError, TypeError):
            return None

    @classmethod
    def clear(cls) -> None:
        try:
            get_runtime_path().unlink(missing_ok=True)
        except OSError:
            pass  # best effort on shutdown

    @property
    def health_url(self) -> str:
        return f"http://127.0.0.1:{self.port}/health"

    def to_status_dict(self) -> dict:
        status = {"running": True, **asdict(self)}
        status["url"] = f"http://127.0.0.1:{self.port}"
        return status


def write_runtime_info(port: int, relay_url: str = "", version: Optional[str] = None) -> RuntimeInfo:
    """Record this process as the running bridge."""
    info = RuntimeInfo(
        port=port,
        pid=os.getpid(),
        started_at=datetime.now(timezone.utc).isoformat(),
        version=version or get_version(),
        relay_url=relay_url,
    )
    info.save()
    return info


def update_relay_status(connected: bool) -> None:
    """Record the relay link state, if a runtime file exists."""
    info = RuntimeInfo.load()
    if info:
        info.set_relay_connected(connected)


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def _fetch_health(url: str) -> Optional[dict]:
    try:
        with urllib.request.urlopen(url, timeout=HEALTH_TIMEOUT) as response:
            if response.status == 200:
                return json.loads(response.read().decode())
    except (OSError, ValueError):
        # Process exists but the server is not answering yet
        pass
    return None


def get_status(verify_health: bool = True) -> dict:
    """Status of the running bridge for ``relaybridge status``.

    A runtime file left behind by a dead process is removed. With
    ``verify_health`` the live link state and queue depths are read from the
    bridge's /health endpoint.
    """
    info = RuntimeInfo.load()
    if not info:
        return {"running": False}
    if not _process_alive(info.pid):
        RuntimeInfo.clear()
        return {"running": False}

    status = info.to_status_dict()
    if verify_health:
        health = _fetch_health(info.health_url)
        if health is not None:
            status["relay_connected"] = health.get("relay_connected", False)
            for key in ("control_queue", "event_queue", "commands_in_flight"):
                if key in health:
                    status[key] = health[key]
    return status
