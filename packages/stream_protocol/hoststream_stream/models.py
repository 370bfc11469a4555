"""Typed models for stream transport and connection state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ConnectionState(str, Enum):
    IDLE = "Idle"
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"


class TransportEvent(str, Enum):
    HANDSHAKE_OK = "handshakeOk"
    HANDSHAKE_FAILED = "handshakeFailed"
    CLOSED = "closed"
    HEARTBEAT_TIMEOUT = "heartbeatTimeout"
    ERROR_FRAME = "errorFrame"
    MESSAGE = "message"


class StompCommand(str, Enum):
    CONNECT = "CONNECT"
    STOMP = "STOMP"
    CONNECTED = "CONNECTED"
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    DISCONNECT = "DISCONNECT"
    MESSAGE = "MESSAGE"
    RECEIPT = "RECEIPT"
    ERROR = "ERROR"
    SEND = "SEND"


@dataclass
class StompFrame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass(frozen=True)
class HeartbeatPlan:
    outgoing_ms: int = 0
    incoming_ms: int = 0

    @property
    def enabled(self) -> bool:
        return self.outgoing_ms > 0 or self.incoming_ms > 0
