import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "stream_protocol"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hoststream_core.replay import ReplayRunner


class ReplayTests(unittest.TestCase):
    def test_replay_report_summarizes_frames(self):
        runner = ReplayRunner()
        transcript = ROOT / "tests" / "transcripts" / "sample_frames.jsonl"
        report = runner.run(transcript, strict=True)

        self.assertEqual(report.total_events, 3)
        self.assertEqual(report.accepted, 3)
        self.assertEqual(report.history_length, 3)
        self.assertEqual(report.max_devices, 2)
        self.assertEqual(report.alert_counts, {"cpu": 1, "memory": 1, "gpu": 1})
        self.assertEqual(report.first_timestamp, 1700000000000)
        self.assertEqual(report.last_timestamp, 1700000002000)
        self.assertEqual(report.errors, [])
        self.assertEqual(runner.store.current().cpu.usage_percent, 42.0)

    def test_strict_mode_reports_bad_lines(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "t.jsonl"
            path.write_text('{"timestamp": 5}\nnot json\n{"timestamp": 3}\n', encoding="utf-8")

            report = ReplayRunner().run(path, strict=True)
            self.assertEqual(report.malformed, 1)
            self.assertEqual(len(report.errors), 2)

            lenient = ReplayRunner().run(path, strict=False)
            self.assertEqual(lenient.accepted, 2)
            self.assertEqual(lenient.errors, [])

    def test_empty_transcript_has_no_frames(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "empty.jsonl"
            path.write_text("\n", encoding="utf-8")
            report = ReplayRunner().run(path)
            self.assertEqual(report.errors, ["no_frames"])


if __name__ == "__main__":
    unittest.main()
