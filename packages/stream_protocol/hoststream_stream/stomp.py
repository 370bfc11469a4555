"""STOMP 1.2 text framing for the telemetry topic subscription."""

from __future__ import annotations

from .models import HeartbeatPlan, StompCommand, StompFrame


NULL = "\x00"
EOL = "\n"

# CONNECT/CONNECTED headers are sent verbatim; every other frame escapes them.
_RAW_HEADER_COMMANDS = {StompCommand.CONNECT.value, StompCommand.CONNECTED.value}

_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


def escape_header(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def unescape_header(value: str) -> str:
    if "\\" not in value:
        return value
    out: list[str] = []
    idx = 0
    while idx < len(value):
        ch = value[idx]
        if ch == "\\" and idx + 1 < len(value):
            mapped = _UNESCAPES.get(value[idx + 1])
            if mapped is None:
                raise ValueError(f"Undefined STOMP header escape: \\{value[idx + 1]}")
            out.append(mapped)
            idx += 2
            continue
        out.append(ch)
        idx += 1
    return "".join(out)


def encode_frame(frame: StompFrame) -> str:
    raw = frame.command in _RAW_HEADER_COMMANDS
    lines = [frame.command]
    for key, value in frame.headers.items():
        if raw:
            lines.append(f"{key}:{value}")
        else:
            lines.append(f"{escape_header(key)}:{escape_header(value)}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


def _parse_frame(text: str) -> StompFrame:
    head, _, body = text.partition("\n\n")
    lines = [line.rstrip("\r") for line in head.split("\n")]
    command = lines[0].strip()
    raw = command in _RAW_HEADER_COMMANDS

    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        key, sep, value = line.partition(":")
        if not sep:
            raise ValueError(f"Malformed STOMP header line: {line!r}")
        if not raw:
            key = unescape_header(key)
            value = unescape_header(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(key, value)
    return StompFrame(command=command, headers=headers, body=body)


class StompDecoder:
    """Incremental decoder for NUL-terminated frames interleaved with heart-beat EOLs."""

    def __init__(self) -> None:
        self._buffer = ""
        self.heartbeats = 0
        self.malformed = 0

    def feed(self, data: str) -> list[StompFrame]:
        self._buffer += data
        frames: list[StompFrame] = []
        while True:
            stripped = self._buffer.lstrip("\r\n")
            self.heartbeats += self._buffer[: len(self._buffer) - len(stripped)].count("\n")
            self._buffer = stripped
            end = self._buffer.find(NULL)
            if end < 0:
                return frames
            chunk = self._buffer[:end]
            self._buffer = self._buffer[end + 1 :]
            try:
                frames.append(_parse_frame(chunk))
            except ValueError:
                self.malformed += 1

    @property
    def pending(self) -> str:
        return self._buffer


def connect_frame(host: str, heartbeat: tuple[int, int] = (4000, 4000)) -> StompFrame:
    return StompFrame(
        command=StompCommand.CONNECT.value,
        headers={
            "accept-version": "1.2,1.1",
            "host": host,
            "heart-beat": f"{max(0, heartbeat[0])},{max(0, heartbeat[1])}",
        },
    )


def subscribe_frame(destination: str, subscription_id: str) -> StompFrame:
    return StompFrame(
        command=StompCommand.SUBSCRIBE.value,
        headers={"id": subscription_id, "destination": destination, "ack": "auto"},
    )


def unsubscribe_frame(subscription_id: str) -> StompFrame:
    return StompFrame(command=StompCommand.UNSUBSCRIBE.value, headers={"id": subscription_id})


def disconnect_frame() -> StompFrame:
    return StompFrame(command=StompCommand.DISCONNECT.value)


def negotiate_heartbeat(client: tuple[int, int], server_header: str | None) -> HeartbeatPlan:
    """Resolve the effective heart-beat intervals from the CONNECTED header.

    ``client`` is (can send every cx ms, wants to receive every cy ms); the
    server header is ``sx,sy`` in the same terms from its side. A zero on either
    side disables that direction.
    """
    cx, cy = client
    try:
        sx_raw, sy_raw = (server_header or "0,0").split(",", 1)
        sx, sy = int(sx_raw.strip()), int(sy_raw.strip())
    except ValueError:
        sx, sy = 0, 0

    outgoing = 0 if cx <= 0 or sy <= 0 else max(cx, sy)
    incoming = 0 if cy <= 0 or sx <= 0 else max(cy, sx)
    return HeartbeatPlan(outgoing_ms=outgoing, incoming_ms=incoming)
