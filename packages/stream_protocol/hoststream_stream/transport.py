"""Stream transports that deliver STOMP lifecycle events to a listener.

Each transport instance serves exactly one connection attempt. Events arrive
on the transport's own thread; after ``close()`` no further events are sent.
"""

from __future__ import annotations

import json
import logging
import os
import ssl
import threading
import time
from typing import Any, Callable
from urllib.parse import urlsplit, urlunsplit

import certifi
import websocket

from .models import HeartbeatPlan, StompCommand
from .stomp import (
    EOL,
    StompDecoder,
    connect_frame,
    disconnect_frame,
    encode_frame,
    negotiate_heartbeat,
    subscribe_frame,
    unsubscribe_frame,
)


logger = logging.getLogger("hoststream.stream.transport")

# Missing inbound heart-beats are tolerated for this many intervals.
HEARTBEAT_GRACE = 2.0


class TransportListener:
    """Receiver for transport events. Methods may be called from any thread."""

    def on_handshake_ok(self) -> None:
        pass

    def on_handshake_failed(self, reason: str) -> None:
        pass

    def on_message(self, body: str) -> None:
        pass

    def on_error_frame(self, message: str) -> None:
        pass

    def on_closed(self, reason: str | None) -> None:
        pass

    def on_heartbeat_timeout(self) -> None:
        pass


class StreamTransport:
    def connect(self, listener: TransportListener) -> None:
        raise NotImplementedError

    def subscribe(self, destination: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


def to_websocket_url(url: str) -> str:
    """Map an http(s) endpoint like ``http://host:8081/ws`` to its raw WebSocket route."""
    parts = urlsplit(url)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme or "ws")
    path = parts.path.rstrip("/") or "/ws"
    if not path.endswith("/websocket"):
        path = f"{path}/websocket"
    return urlunsplit((scheme, parts.netloc, path, parts.query, ""))


def _ssl_options() -> dict[str, Any]:
    if os.environ.get("HOSTSTREAM_ALLOW_INSECURE_TLS", "").strip() == "1":
        return {"cert_reqs": ssl.CERT_NONE, "check_hostname": False}

    ca_bundle = os.environ.get("HOSTSTREAM_CA_BUNDLE", "").strip()
    return {"cert_reqs": ssl.CERT_REQUIRED, "ca_certs": ca_bundle or certifi.where()}


class WebSocketTransport(StreamTransport):
    """STOMP over a raw WebSocket, driven by websocket-client on a daemon thread."""

    def __init__(self, url: str, heartbeat: tuple[int, int] = (4000, 4000)) -> None:
        self.url = to_websocket_url(url)
        self.heartbeat = heartbeat
        self._listener: TransportListener | None = None
        self._app: websocket.WebSocketApp | None = None
        self._decoder = StompDecoder()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._connected = False
        self._closing = False
        self._error: str | None = None
        self._subscription_id: str | None = None
        self._plan = HeartbeatPlan()
        self._last_rx = time.monotonic()
        self._last_tx = time.monotonic()

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, listener: TransportListener) -> None:
        self._listener = listener
        self._app = websocket.WebSocketApp(
            self.url,
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )
        thread = threading.Thread(target=self._run, name="hoststream-ws", daemon=True)
        thread.start()

    def _run(self) -> None:
        app = self._app
        if app is None:
            return
        sslopt = _ssl_options() if self.url.startswith("wss:") else None
        app.run_forever(sslopt=sslopt, ping_interval=0, reconnect=0)

    def _send_raw(self, data: str) -> None:
        app = self._app
        if app is None:
            raise RuntimeError("WebSocket is not open")
        app.send(data)
        self._last_tx = time.monotonic()

    def _on_open(self, _ws) -> None:
        host = urlsplit(self.url).hostname or "localhost"
        self._last_rx = time.monotonic()
        self._send_raw(encode_frame(connect_frame(host, self.heartbeat)))

    def _on_message(self, _ws, message) -> None:
        if self._closing or self._listener is None:
            return
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        self._last_rx = time.monotonic()

        malformed_before = self._decoder.malformed
        frames = self._decoder.feed(message)
        if self._decoder.malformed != malformed_before:
            logger.warning("dropped malformed STOMP frame", extra={"event": "stomp_malformed"})

        for frame in frames:
            if self._closing:
                return
            if frame.command == StompCommand.CONNECTED.value:
                self._plan = negotiate_heartbeat(self.heartbeat, frame.headers.get("heart-beat"))
                self._connected = True
                self._start_heartbeat()
                self._listener.on_handshake_ok()
            elif frame.command == StompCommand.MESSAGE.value:
                self._listener.on_message(frame.body)
            elif frame.command == StompCommand.ERROR.value:
                message_text = frame.headers.get("message") or frame.body.strip() or "WebSocket error"
                self._listener.on_error_frame(message_text)

    def _on_error(self, _ws, error) -> None:
        self._error = str(error) or error.__class__.__name__

    def _on_close(self, _ws, status_code=None, reason=None) -> None:
        self._stop.set()
        with self._lock:
            if self._closing or self._listener is None:
                return
            self._closing = True
        if not self._connected:
            self._listener.on_handshake_failed(self._error or "connection closed before handshake")
            return
        detail = self._error or (reason if isinstance(reason, str) and reason else None)
        self._listener.on_closed(detail)

    def _start_heartbeat(self) -> None:
        if not self._plan.enabled:
            return
        intervals = [ms for ms in (self._plan.outgoing_ms, self._plan.incoming_ms) if ms > 0]
        tick_s = min(intervals) / 1000 / 2
        thread = threading.Thread(target=self._heartbeat_loop, args=(tick_s,), name="hoststream-heartbeat", daemon=True)
        thread.start()

    def _heartbeat_loop(self, tick_s: float) -> None:
        while not self._stop.wait(tick_s):
            now = time.monotonic()
            if self._plan.incoming_ms and (now - self._last_rx) * 1000 > self._plan.incoming_ms * HEARTBEAT_GRACE:
                self._expire()
                return
            if self._plan.outgoing_ms and (now - self._last_tx) * 1000 >= self._plan.outgoing_ms:
                if self._stop.is_set():
                    return
                try:
                    self._send_raw(EOL)
                except (websocket.WebSocketException, RuntimeError) as exc:
                    logger.debug("heartbeat send failed: %s", exc)

    def _expire(self) -> None:
        with self._lock:
            if self._closing:
                return
            self._closing = True
        self._stop.set()
        logger.warning("heartbeat timeout", extra={"event": "heartbeat_timeout"})
        if self._listener is not None:
            self._listener.on_heartbeat_timeout()
        if self._app is not None:
            self._app.close()

    def subscribe(self, destination: str) -> None:
        self._subscription_id = "sub-0"
        self._send_raw(encode_frame(subscribe_frame(destination, self._subscription_id)))

    def close(self) -> None:
        with self._lock:
            if self._closing and self._app is None:
                return
            self._closing = True
        self._stop.set()
        app, self._app = self._app, None
        if app is None:
            return
        if self._connected:
            try:
                if self._subscription_id is not None:
                    app.send(encode_frame(unsubscribe_frame(self._subscription_id)))
                app.send(encode_frame(disconnect_frame()))
            except websocket.WebSocketException as exc:
                logger.debug("graceful STOMP disconnect skipped: %s", exc)
        app.close()
        self._connected = False


class LoopbackTransport(StreamTransport):
    """In-process transport that publishes frames from a local source on a timer.

    ``source`` returns one wire-shaped frame per call; it is serialized to JSON
    exactly as a remote broker would deliver it.
    """

    def __init__(self, source: Callable[[], dict[str, Any]], interval_ms: int = 1000) -> None:
        self.source = source
        self.interval_ms = max(50, int(interval_ms))
        self._listener: TransportListener | None = None
        self._stop = threading.Event()
        self._subscribed = threading.Event()
        self._thread: threading.Thread | None = None

    def connect(self, listener: TransportListener) -> None:
        self._listener = listener
        self._thread = threading.Thread(target=self._pump, name="hoststream-loopback", daemon=True)
        self._thread.start()

    def subscribe(self, destination: str) -> None:
        self._subscribed.set()

    def _pump(self) -> None:
        listener = self._listener
        if listener is None or self._stop.is_set():
            return
        listener.on_handshake_ok()
        while not self._stop.wait(self.interval_ms / 1000):
            if not self._subscribed.is_set():
                continue
            try:
                body = json.dumps(self.source())
            except Exception as exc:
                logger.exception("local frame source failed", extra={"event": "loopback_source_error"})
                if not self._stop.is_set():
                    listener.on_closed(str(exc))
                return
            if self._stop.is_set():
                return
            listener.on_message(body)

    def close(self) -> None:
        self._stop.set()
