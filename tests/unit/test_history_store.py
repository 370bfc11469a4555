import sys
import threading
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "stream_protocol"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hoststream_core.history import HISTORY_CAPACITY, HistoryStore
from hoststream_telemetry.models import CpuStats, Snapshot


def _snap(ts: int, cpu: float = 0.0) -> Snapshot:
    return Snapshot(timestamp=ts, cpu=CpuStats(usage_percent=cpu))


class HistoryStoreTests(unittest.TestCase):
    def test_starts_with_empty_default(self):
        store = HistoryStore()
        self.assertEqual(store.current(), Snapshot.empty())
        self.assertFalse(store.current().has_data)
        self.assertEqual(store.history(), ())

    def test_update_sets_current_and_appends(self):
        store = HistoryStore()
        store.update(_snap(1, 10.0))
        store.update(_snap(2, 20.0))
        self.assertEqual(store.current().timestamp, 2)
        self.assertEqual([s.timestamp for s in store.history()], [1, 2])
        self.assertEqual(len(store), 2)

    def test_window_is_bounded_fifo(self):
        store = HistoryStore()
        for ts in range(1, 62):
            store.update(_snap(ts))
        history = store.history()
        self.assertEqual(len(history), HISTORY_CAPACITY)
        self.assertEqual(history[0].timestamp, 2)
        self.assertEqual(history[-1].timestamp, 61)

    def test_previous_history_view_is_unchanged_by_updates(self):
        store = HistoryStore()
        store.update(_snap(1))
        before = store.history()
        store.update(_snap(2))
        self.assertEqual(len(before), 1)
        self.assertEqual(len(store.history()), 2)

    def test_subscribers_notified_and_unsubscribe(self):
        store = HistoryStore()
        seen: list[int] = []
        unsubscribe = store.subscribe(lambda snap: seen.append(snap.timestamp))
        store.update(_snap(5))
        unsubscribe()
        store.update(_snap(6))
        self.assertEqual(seen, [5])

    def test_failing_subscriber_does_not_block_update(self):
        store = HistoryStore()
        seen: list[int] = []

        def _boom(_snap):
            raise RuntimeError("boom")

        store.subscribe(_boom)
        store.subscribe(lambda snap: seen.append(snap.timestamp))
        with self.assertLogs("hoststream.history", level="ERROR"):
            store.update(_snap(7))
        self.assertEqual(store.current().timestamp, 7)
        self.assertEqual(seen, [7])


    def test_concurrent_updates_are_serialized_and_bounded(self):
        store = HistoryStore()
        seen: list[int] = []
        store.subscribe(lambda snap: seen.append(snap.timestamp))
        start = threading.Event()

        def writer(base: int) -> None:
            start.wait()
            for offset in range(50):
                store.update(_snap(base + offset))

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(8)]
        for thread in threads:
            thread.start()
        start.set()
        for thread in threads:
            thread.join(10)

        history = store.history()
        self.assertEqual(len(history), HISTORY_CAPACITY)
        self.assertEqual(len(seen), 400)
        # The window is exactly the last 60 updates in the order they were applied.
        self.assertEqual([s.timestamp for s in history], seen[-HISTORY_CAPACITY:])
        self.assertEqual(store.current().timestamp, seen[-1])
        for n in range(8):
            own = [s.timestamp for s in history if n * 1000 <= s.timestamp < (n + 1) * 1000]
            self.assertEqual(own, sorted(own))


if __name__ == "__main__":
    unittest.main()
