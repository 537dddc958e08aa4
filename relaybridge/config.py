"""Configuration for relaybridge.

Simple configuration loader from environment variables (a ``.env`` file is
loaded by the CLI before anything reads them).
"""

import os
import platform
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def get_data_dir() -> Path:
    """Get the data directory for relaybridge."""
    if platform.system() == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif platform.system() == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    data_dir = base / "relaybridge"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


@lru_cache(maxsize=1)
def load_config() -> dict:
    """
    Load application configuration from environment variables.

    Returns:
        dict with configuration values
    """
    return {
        # Relay endpoint: ws://RELAY_HOST:RELAY_PORT/RELAY_PATH
        "RELAY_HOST": os.getenv("RELAY_HOST", "127.0.0.1"),
        "RELAY_PORT": int(os.getenv("RELAY_PORT", "8765")),
        "RELAY_PATH": os.getenv("RELAY_PATH", "/mc"),

        # Connection supervision (seconds)
        "RECONNECT_INTERVAL": float(os.getenv("RELAY_RECONNECT_INTERVAL", "5.0")),
        "CONNECT_TIMEOUT": float(os.getenv("RELAY_CONNECT_TIMEOUT", "5.0")),
        "SEND_TIMEOUT": float(os.getenv("RELAY_SEND_TIMEOUT", "5.0")),

        # Outbound queue capacities (frames)
        "CONTROL_QUEUE_SIZE": int(os.getenv("RELAY_CONTROL_QUEUE_SIZE", "1000")),
        "EVENT_QUEUE_SIZE": int(os.getenv("RELAY_EVENT_QUEUE_SIZE", "10000")),

        # Status heartbeat period; the game samples every 400 ticks (~20s)
        "STATUS_INTERVAL": float(os.getenv("RELAY_STATUS_INTERVAL", "20.0")),

        # Local health/event HTTP server, 0 = auto-assign
        "HTTP_PORT": int(os.getenv("RELAY_HTTP_PORT", "0")),

        # Dedicated server launch
        "SERVER_CMD": os.getenv("RELAY_SERVER_CMD", ""),
        "SERVER_DIR": os.getenv("RELAY_SERVER_DIR", ""),
    }


def get_config_value(key: str, default=None):
    """Get a single configuration value."""
    config = load_config()
    return config.get(key, default)


def require_config_value(key: str):
    """Get a required configuration value, raising if not found."""
    value = get_config_value(key)
    if not value:
        raise RuntimeError(f"Required configuration '{key}' is not set")
    return value


@dataclass
class BridgeSettings:
    """Runtime settings for one bridge instance."""
    relay_host: str = "127.0.0.1"
    relay_port: int = 8765
    relay_path: str = "/mc"
    reconnect_interval: float = 5.0
    connect_timeout: float = 5.0
    send_timeout: float = 5.0
    control_queue_size: int = 1000
    event_queue_size: int = 10000
    status_interval: float = 20.0
    http_port: int = 0
    server_cmd: str = ""
    server_dir: Optional[str] = None

    @property
    def url(self) -> str:
        path = self.relay_path if self.relay_path.startswith("/") else f"/{self.relay_path}"
        return f"ws://{self.relay_host}:{self.relay_port}{path}"

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        """Build settings from the environment configuration."""
        config = load_config()
        return cls(
            relay_host=config["RELAY_HOST"],
            relay_port=config["RELAY_PORT"],
            relay_path=config["RELAY_PATH"],
            reconnect_interval=config["RECONNECT_INTERVAL"],
            connect_timeout=config["CONNECT_TIMEOUT"],
            send_timeout=config["SEND_TIMEOUT"],
            control_queue_size=config["CONTROL_QUEUE_SIZE"],
            event_queue_size=config["EVENT_QUEUE_SIZE"],
            status_interval=config["STATUS_INTERVAL"],
            http_port=config["HTTP_PORT"],
            server_cmd=config["SERVER_CMD"],
            server_dir=config["SERVER_DIR"] or None,
        )
