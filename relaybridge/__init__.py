"""relaybridge - bridge a game server to a chat relay over WebSocket."""

from .frames import DecodeError, Frame, FrameType, decode, encode
from .host import GameHost, HostError, HostStatus, SerialExecutorHost
from .tunnel import RelayTunnel

__all__ = [
    "DecodeError",
    "Frame",
    "FrameType",
    "GameHost",
    "HostError",
    "HostStatus",
    "RelayTunnel",
    "SerialExecutorHost",
    "decode",
    "encode",
]
