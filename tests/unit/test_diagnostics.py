import json
import sys
import tempfile
import unittest
import zipfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "stream_protocol"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hoststream_core.config import load_config
from hoststream_core.diagnostics import DiagnosticsExporter, build_doctor_payload, redact
from hoststream_telemetry.models import Snapshot


class _OfflineClient:
    def fetch_info(self):
        return None


class _OnlineClient:
    def fetch_info(self):
        return "2.0.1"


class DiagnosticsTests(unittest.TestCase):
    def test_doctor_payload_reports_endpoints(self):
        cfg = load_config(Path("/tmp/nonexistent-hoststream-config.json"))
        payload = build_doctor_payload(cfg, _OnlineClient())
        self.assertTrue(payload["endpoints"]["stream"].endswith("/websocket"))
        self.assertEqual(payload["backend"], {"reachable": True, "version": "2.0.1"})

    def test_redact_masks_secret_keys(self):
        out = redact({"api_token": "abc", "nested": [{"password": "x", "ok": 1}]})
        self.assertEqual(out["api_token"], "***REDACTED***")
        self.assertEqual(out["nested"][0]["password"], "***REDACTED***")
        self.assertEqual(out["nested"][0]["ok"], 1)

    def test_bundle_exports_zip(self):
        cfg = load_config(Path("/tmp/nonexistent-hoststream-config.json"))
        doctor = build_doctor_payload(cfg, _OfflineClient())
        exporter = DiagnosticsExporter()
        events = [{"event": "connect_start", "attempt": 1}]

        with tempfile.TemporaryDirectory() as tmp:
            bundle = exporter.bundle(
                cfg=cfg,
                doctor_payload=doctor,
                recent_connection_events=events,
                history=[Snapshot(timestamp=1)],
                output_dir=Path(tmp),
            )
            self.assertTrue(bundle.exists())

            with zipfile.ZipFile(bundle, "r") as zf:
                names = set(zf.namelist())
                self.assertIn("manifest.json", names)
                self.assertIn("doctor.json", names)
                self.assertIn("config.redacted.json", names)
                self.assertIn("history.csv", names)
                self.assertEqual(json.loads(zf.read("connection_events.json")), events)
                self.assertFalse(json.loads(zf.read("doctor.json"))["backend"]["reachable"])


if __name__ == "__main__":
    unittest.main()
