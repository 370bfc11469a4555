import json
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "stream_protocol"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hoststream_core.connection import (
    DISCONNECTED_MESSAGE,
    HANDSHAKE_TIMEOUT_MESSAGE,
    HEARTBEAT_TIMEOUT_MESSAGE,
    ConnectionManager,
)
from hoststream_core.history import HistoryStore
from hoststream_stream.models import ConnectionState as S
from hoststream_stream.transport import StreamTransport


class _Handle:
    def __init__(self, delay_s, fn):
        self.delay_s = delay_s
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.handles: list[_Handle] = []

    def call_later(self, delay_s, fn):
        handle = _Handle(delay_s, fn)
        self.handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def fire(self, delay_s):
        for handle in self.pending():
            if handle.delay_s == delay_s:
                handle.cancelled = True
                handle.fn()
                return True
        return False


class FakeTransport(StreamTransport):
    def __init__(self):
        self.listener = None
        self.subscribed: list[str] = []
        self.closed = False

    def connect(self, listener):
        self.listener = listener

    def subscribe(self, destination):
        self.subscribed.append(destination)

    def close(self):
        self.closed = True


def _frame(ts: int, cpu: float = 10.0) -> str:
    return json.dumps({"timestamp": ts, "cpu": {"usagePercent": cpu}, "memory": {"usagePercent": 20.0}})


class ConnectionManagerTests(unittest.TestCase):
    def setUp(self):
        self.store = HistoryStore()
        self.scheduler = ManualScheduler()
        self.transports: list[FakeTransport] = []
        self.changes: list[tuple] = []
        self.frames: list = []

        def factory():
            transport = FakeTransport()
            self.transports.append(transport)
            return transport

        self.manager = ConnectionManager(
            store=self.store,
            transport_factory=factory,
            scheduler=self.scheduler,
            on_frame=self.frames.append,
            on_connection_change=lambda state, error: self.changes.append((state, error)),
        )

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    def test_starts_idle(self):
        self.assertEqual(self.manager.state, S.IDLE)
        self.assertFalse(self.manager.running)

    def test_connect_subscribe_and_accept_frames(self):
        self.manager.start()
        self.assertEqual(self.manager.state, S.CONNECTING)
        self.transport.listener.on_handshake_ok()
        self.assertEqual(self.manager.state, S.CONNECTED)
        self.assertEqual(self.transport.subscribed, ["/topic/stats"])

        self.transport.listener.on_message(_frame(1))
        self.transport.listener.on_message(_frame(2))
        self.assertEqual([s.timestamp for s in self.store.history()], [1, 2])
        self.assertEqual(len(self.frames), 2)
        self.assertEqual(self.changes, [(S.CONNECTING, None), (S.CONNECTED, None)])

    def test_drop_then_reconnect_after_fixed_delay(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        first = self.transport
        first.listener.on_closed(None)

        self.assertEqual(self.manager.state, S.DISCONNECTED)
        self.assertEqual(self.manager.last_error, DISCONNECTED_MESSAGE)
        self.assertTrue(first.closed)
        self.assertTrue(self.scheduler.fire(3.0))
        self.assertEqual(self.manager.state, S.CONNECTING)
        self.assertEqual(len(self.transports), 2)

        self.transport.listener.on_handshake_ok()
        self.assertEqual(
            [state for state, _ in self.changes],
            [S.CONNECTING, S.CONNECTED, S.DISCONNECTED, S.CONNECTING, S.CONNECTED],
        )
        self.assertIsNone(self.manager.last_error)

    def test_history_survives_reconnect(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        self.transport.listener.on_message(_frame(1))
        self.transport.listener.on_closed("gone")
        self.assertEqual(len(self.store.history()), 1)
        self.assertEqual(self.store.current().timestamp, 1)

    def test_malformed_frame_is_dropped(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        self.transport.listener.on_message(_frame(1))
        with self.assertLogs("hoststream.connection", level="WARNING"):
            self.transport.listener.on_message("{not json")
            self.transport.listener.on_message("[1, 2]")
        self.assertEqual(self.manager.state, S.CONNECTED)
        self.assertEqual(len(self.store.history()), 1)
        self.assertEqual(self.manager.status.frames_dropped, 2)

    def test_error_frame_disconnects_with_message(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        self.transport.listener.on_error_frame("broker exploded")
        self.assertEqual(self.manager.state, S.DISCONNECTED)
        self.assertEqual(self.changes[-1], (S.DISCONNECTED, "broker exploded"))

    def test_heartbeat_timeout_disconnects(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        self.transport.listener.on_heartbeat_timeout()
        self.assertEqual(self.manager.state, S.DISCONNECTED)
        self.assertEqual(self.manager.last_error, HEARTBEAT_TIMEOUT_MESSAGE)

    def test_handshake_failure_stays_connecting_and_retries(self):
        self.manager.start()
        self.transport.listener.on_handshake_failed("refused")
        self.assertEqual(self.manager.state, S.CONNECTING)
        self.assertEqual(self.manager.last_error, "refused")
        self.assertEqual(self.changes[-1], (S.CONNECTING, "refused"))
        self.assertTrue(self.scheduler.fire(3.0))
        self.assertEqual(len(self.transports), 2)

    def test_handshake_timeout_retries(self):
        self.manager.start()
        self.assertTrue(self.scheduler.fire(5.0))
        self.assertEqual(self.manager.last_error, HANDSHAKE_TIMEOUT_MESSAGE)
        self.assertTrue(self.transports[0].closed)
        self.assertTrue(self.scheduler.fire(3.0))
        self.assertEqual(len(self.transports), 2)

    def test_factory_error_schedules_retry(self):
        def broken():
            raise OSError("no route")

        self.manager.transport_factory = broken
        self.manager.start()
        self.assertEqual(self.manager.state, S.CONNECTING)
        self.assertEqual(self.manager.last_error, "no route")
        self.assertEqual(len(self.scheduler.pending()), 1)

    def test_messages_before_handshake_are_ignored(self):
        self.manager.start()
        self.transport.listener.on_message(_frame(1))
        self.assertEqual(self.store.history(), ())

    def test_stop_silences_callbacks(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        listener = self.transport.listener
        changes_before = list(self.changes)

        self.manager.stop()
        self.assertEqual(self.manager.state, S.IDLE)
        self.assertTrue(self.transport.closed)
        listener.on_message(_frame(9))
        listener.on_closed("late")
        self.assertEqual(self.changes, changes_before)
        self.assertEqual(self.frames, [])
        self.assertEqual(self.scheduler.pending(), [])

    def test_stop_cancels_pending_retry(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        self.transport.listener.on_closed(None)
        self.manager.stop()
        self.assertFalse(self.scheduler.fire(3.0))
        self.assertEqual(len(self.transports), 1)

    def test_start_and_stop_are_idempotent(self):
        self.manager.start()
        self.manager.start()
        self.assertEqual(len(self.transports), 1)
        self.manager.stop()
        self.manager.stop()
        self.assertEqual(self.manager.state, S.IDLE)

    def test_stale_events_from_old_transport_are_ignored(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        old = self.transport
        old.listener.on_closed(None)
        self.scheduler.fire(3.0)
        old.listener.on_message(_frame(1))
        old.listener.on_closed("again")
        self.assertEqual(self.manager.state, S.CONNECTING)
        self.assertEqual(self.store.history(), ())

    def test_recent_events_are_recorded(self):
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        events = [row["event"] for row in self.manager.recent_events()]
        self.assertEqual(events, ["start", "connect_start", "connect_ok"])


    def test_stop_while_connecting_cancels_handshake_timer(self):
        self.manager.start()
        handshake = self.scheduler.pending()
        self.assertEqual([h.delay_s for h in handshake], [5.0])

        self.manager.stop()
        self.assertTrue(handshake[0].cancelled)
        self.assertTrue(self.transport.closed)
        self.assertFalse(self.scheduler.fire(5.0))
        self.assertEqual(self.manager.state, S.IDLE)
        self.assertEqual(self.changes, [(S.CONNECTING, None)])

    def test_stop_from_connected_callback_stays_idle(self):
        def on_change(state, error):
            self.changes.append((state, error))
            if state == S.CONNECTED:
                self.manager.stop()

        self.manager.on_connection_change = on_change
        self.manager.start()
        self.transport.listener.on_handshake_ok()

        self.assertEqual(self.manager.state, S.IDLE)
        self.assertEqual(self.changes, [(S.CONNECTING, None), (S.CONNECTED, None)])
        self.assertEqual(self.transport.subscribed, [])
        self.assertEqual(self.scheduler.pending(), [])
        self.assertFalse(self.scheduler.fire(3.0))
        self.assertEqual(len(self.transports), 1)

    def test_stop_from_connecting_callback_skips_connect(self):
        def on_change(state, error):
            self.changes.append((state, error))
            self.manager.stop()

        self.manager.on_connection_change = on_change
        self.manager.start()

        self.assertEqual(self.manager.state, S.IDLE)
        self.assertEqual(self.transports, [])
        self.assertEqual(self.scheduler.pending(), [])

    def test_stop_from_disconnected_callback_skips_retry(self):
        def on_change(state, error):
            self.changes.append((state, error))
            if state == S.DISCONNECTED:
                self.manager.stop()

        self.manager.on_connection_change = on_change
        self.manager.start()
        self.transport.listener.on_handshake_ok()
        self.transport.listener.on_closed(None)

        self.assertEqual(self.manager.state, S.IDLE)
        self.assertEqual(self.scheduler.pending(), [])
        self.assertEqual(self.changes[-1], (S.DISCONNECTED, DISCONNECTED_MESSAGE))

    def test_stop_from_failed_handshake_callback_skips_retry(self):
        def on_change(state, error):
            self.changes.append((state, error))
            if error:
                self.manager.stop()

        self.manager.on_connection_change = on_change
        self.manager.start()
        self.transport.listener.on_handshake_failed("refused")

        self.assertEqual(self.manager.state, S.IDLE)
        self.assertEqual(self.scheduler.pending(), [])


if __name__ == "__main__":
    unittest.main()
