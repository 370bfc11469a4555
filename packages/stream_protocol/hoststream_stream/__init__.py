"""Stream protocol package: STOMP framing and telemetry transports."""

from .models import ConnectionState, HeartbeatPlan, StompCommand, StompFrame, TransportEvent
from .stomp import StompDecoder, encode_frame, negotiate_heartbeat
from .transport import LoopbackTransport, StreamTransport, TransportListener, WebSocketTransport, to_websocket_url

__all__ = [
    "ConnectionState",
    "HeartbeatPlan",
    "LoopbackTransport",
    "StompCommand",
    "StompDecoder",
    "StompFrame",
    "StreamTransport",
    "TransportEvent",
    "TransportListener",
    "WebSocketTransport",
    "encode_frame",
    "negotiate_heartbeat",
    "to_websocket_url",
]
