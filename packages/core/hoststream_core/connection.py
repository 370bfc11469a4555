"""Connection manager: STOMP subscription lifecycle with fixed-delay reconnect."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from hoststream_stream.models import ConnectionState, TransportEvent
from hoststream_stream.transport import StreamTransport, TransportListener
from hoststream_telemetry.models import Snapshot
from hoststream_telemetry.normalizer import normalize_frame

from .history import HistoryStore


logger = logging.getLogger("hoststream.connection")

DEFAULT_TOPIC = "/topic/stats"
RECONNECT_DELAY_MS = 3000
CONNECT_TIMEOUT_MS = 5000
DISCONNECTED_MESSAGE = "Disconnected from server"
ERROR_FRAME_MESSAGE = "WebSocket error"
HEARTBEAT_TIMEOUT_MESSAGE = "Heartbeat timeout"
HANDSHAKE_TIMEOUT_MESSAGE = "Handshake timed out"

FrameCallback = Callable[[Snapshot], None]
ConnectionCallback = Callable[[ConnectionState, "str | None"], None]


class TimerScheduler:
    """Default scheduler: one daemon ``threading.Timer`` per delayed call."""

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()
        return timer


@dataclass
class ConnectionStatus:
    state: ConnectionState = ConnectionState.IDLE
    last_error: str | None = None
    attempts: int = 0
    frames_accepted: int = 0
    frames_dropped: int = 0


class _AttemptListener(TransportListener):
    """Tags transport events with the attempt that produced them."""

    def __init__(self, manager: "ConnectionManager", attempt: int) -> None:
        self._manager = manager
        self._attempt = attempt

    def on_handshake_ok(self) -> None:
        self._manager._handle(self._attempt, TransportEvent.HANDSHAKE_OK)

    def on_handshake_failed(self, reason: str) -> None:
        self._manager._handle(self._attempt, TransportEvent.HANDSHAKE_FAILED, reason)

    def on_message(self, body: str) -> None:
        self._manager._handle(self._attempt, TransportEvent.MESSAGE, body)

    def on_error_frame(self, message: str) -> None:
        self._manager._handle(self._attempt, TransportEvent.ERROR_FRAME, message)

    def on_closed(self, reason: str | None) -> None:
        self._manager._handle(self._attempt, TransportEvent.CLOSED, reason)

    def on_heartbeat_timeout(self) -> None:
        self._manager._handle(self._attempt, TransportEvent.HEARTBEAT_TIMEOUT)


class ConnectionManager:
    """Owns the live transport and the connection state; sole writer into the store.

    Transitions are driven by transport events and never raise to the caller.
    Every notification is delivered under the manager lock, so once ``stop()``
    returns no further ``on_frame`` or ``on_connection_change`` calls happen.
    """

    def __init__(
        self,
        store: HistoryStore,
        transport_factory: Callable[[], StreamTransport],
        topic: str = DEFAULT_TOPIC,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        connect_timeout_ms: int = CONNECT_TIMEOUT_MS,
        scheduler: Any | None = None,
        on_frame: FrameCallback | None = None,
        on_connection_change: ConnectionCallback | None = None,
    ) -> None:
        self.store = store
        self.transport_factory = transport_factory
        self.topic = topic
        self.reconnect_delay_ms = reconnect_delay_ms
        self.connect_timeout_ms = connect_timeout_ms
        self.on_frame = on_frame
        self.on_connection_change = on_connection_change

        self._scheduler = scheduler or TimerScheduler()
        self._status = ConnectionStatus()
        self._lock = threading.RLock()
        self._attempt = 0
        self._transport: StreamTransport | None = None
        self._retry_handle: Any | None = None
        self._handshake_handle: Any | None = None
        self._events: list[dict[str, Any]] = []

    @property
    def state(self) -> ConnectionState:
        return self._status.state

    @property
    def last_error(self) -> str | None:
        return self._status.last_error

    @property
    def running(self) -> bool:
        return self._status.state != ConnectionState.IDLE

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        return self._events[-limit:]

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "state": self._status.state.value,
        }
        row.update(fields)
        self._events.append(row)
        if len(self._events) > 1000:
            self._events = self._events[-1000:]

    # Public lifecycle

    def start(self) -> None:
        with self._lock:
            if self._status.state != ConnectionState.IDLE:
                return
            self._status.last_error = None
            self._log_event("start")
            self._begin_attempt()

    def stop(self) -> None:
        with self._lock:
            if self._status.state == ConnectionState.IDLE:
                return
            self._cancel_timers()
            self._teardown()
            self._status.state = ConnectionState.IDLE
            self._log_event("stop")
            logger.info("connection stopped", extra={"event": "connection_stopped"})

    # Transitions

    def _notify(self) -> bool:
        """Run the change callback; False if it stopped or restarted the manager meanwhile."""
        callback = self.on_connection_change
        if callback is None:
            return True
        attempt = self._attempt
        try:
            callback(self._status.state, self._status.last_error)
        except Exception:
            logger.exception("connection change callback failed", extra={"event": "callback_error"})
        return attempt == self._attempt

    def _begin_attempt(self) -> None:
        self._attempt += 1
        attempt = self._attempt
        self._status.attempts += 1
        was_connecting = self._status.state == ConnectionState.CONNECTING
        self._status.state = ConnectionState.CONNECTING
        if not was_connecting and not self._notify():
            return
        self._log_event("connect_start", attempt=self._status.attempts)

        self._handshake_handle = self._scheduler.call_later(
            self.connect_timeout_ms / 1000,
            lambda: self._on_handshake_timeout(attempt),
        )
        try:
            self._transport = self.transport_factory()
            self._transport.connect(_AttemptListener(self, attempt))
        except Exception as exc:
            logger.warning("transport connect failed: %s", exc, extra={"event": "connect_error"})
            self._connect_failed(str(exc) or exc.__class__.__name__)

    def _on_handshake_timeout(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt or self._status.state != ConnectionState.CONNECTING:
                return
            self._handshake_handle = None
            self._connect_failed(HANDSHAKE_TIMEOUT_MESSAGE)

    def _connect_failed(self, reason: str) -> None:
        """Handshake did not complete: stay Connecting and retry after the fixed delay."""
        self._cancel_timers()
        self._teardown()
        self._status.last_error = reason
        self._log_event("connect_error", error=reason)
        if self._notify():
            self._schedule_retry()

    def _connection_lost(self, reason: str) -> None:
        self._cancel_timers()
        self._teardown()
        self._status.state = ConnectionState.DISCONNECTED
        self._status.last_error = reason
        self._log_event("disconnected", error=reason)
        logger.warning("connection lost: %s", reason, extra={"event": "connection_lost"})
        if self._notify():
            self._schedule_retry()

    def _schedule_retry(self) -> None:
        attempt = self._attempt
        self._retry_handle = self._scheduler.call_later(
            self.reconnect_delay_ms / 1000,
            lambda: self._on_retry(attempt),
        )

    def _on_retry(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt or self._status.state == ConnectionState.IDLE:
                return
            self._retry_handle = None
            self._begin_attempt()

    def _cancel_timers(self) -> None:
        for handle in (self._retry_handle, self._handshake_handle):
            if handle is not None:
                handle.cancel()
        self._retry_handle = None
        self._handshake_handle = None

    def _teardown(self) -> None:
        # Events still in flight from the old transport carry a stale attempt id.
        self._attempt += 1
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            transport.close()
        except Exception as exc:
            logger.warning("transport close failed: %s", exc, extra={"event": "close_error"})

    # Event dispatch

    def _handle(self, attempt: int, event: TransportEvent, payload: str | None = None) -> None:
        with self._lock:
            if attempt != self._attempt or self._status.state in (ConnectionState.IDLE, ConnectionState.DISCONNECTED):
                return
            state = self._status.state

            if event == TransportEvent.MESSAGE:
                if state == ConnectionState.CONNECTED:
                    self._accept_frame(payload or "")
                return

            if event == TransportEvent.ERROR_FRAME:
                self._connection_lost(payload or ERROR_FRAME_MESSAGE)
                return

            if state == ConnectionState.CONNECTING:
                if event == TransportEvent.HANDSHAKE_OK:
                    self._connected()
                elif event == TransportEvent.HEARTBEAT_TIMEOUT:
                    self._connect_failed(HEARTBEAT_TIMEOUT_MESSAGE)
                else:
                    self._connect_failed(payload or DISCONNECTED_MESSAGE)
                return

            if state == ConnectionState.CONNECTED:
                if event == TransportEvent.HEARTBEAT_TIMEOUT:
                    self._connection_lost(HEARTBEAT_TIMEOUT_MESSAGE)
                elif event in (TransportEvent.CLOSED, TransportEvent.HANDSHAKE_FAILED):
                    self._connection_lost(payload or DISCONNECTED_MESSAGE)

    def _connected(self) -> None:
        if self._handshake_handle is not None:
            self._handshake_handle.cancel()
            self._handshake_handle = None
        self._status.state = ConnectionState.CONNECTED
        self._status.last_error = None
        self._log_event("connect_ok", topic=self.topic)
        logger.info("connected, subscribing to %s", self.topic, extra={"event": "connected"})
        if not self._notify() or self._transport is None:
            return

        try:
            self._transport.subscribe(self.topic)
        except Exception as exc:
            self._connection_lost(str(exc) or DISCONNECTED_MESSAGE)

    def _accept_frame(self, body: str) -> None:
        try:
            raw = json.loads(body)
        except ValueError as exc:
            self._status.frames_dropped += 1
            logger.warning("failed to parse stats message: %s", exc, extra={"event": "frame_malformed"})
            return
        if not isinstance(raw, dict):
            self._status.frames_dropped += 1
            logger.warning("stats message is not an object", extra={"event": "frame_malformed"})
            return

        snapshot = normalize_frame(raw)
        self.store.update(snapshot)
        self._status.frames_accepted += 1

        callback = self.on_frame
        if callback is not None:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("frame callback failed", extra={"event": "callback_error"})
