"""Replay captured telemetry frames through normalization and the history window."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hoststream_telemetry.normalizer import normalize_frame

from .alerts import evaluate_alerts
from .history import HistoryStore


@dataclass(frozen=True)
class ReplayEvent:
    line: int
    body: str


@dataclass
class ReplayReport:
    total_events: int = 0
    accepted: int = 0
    malformed: int = 0
    history_length: int = 0
    first_timestamp: int = 0
    last_timestamp: int = 0
    max_devices: int = 0
    alert_counts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class ReplayRunner:
    """Feeds a JSON-lines capture into a fresh store the way a live stream would.

    Each line is either a frame document itself or an envelope with the raw
    message text under ``body``.
    """

    def __init__(self) -> None:
        self.store = HistoryStore()

    @staticmethod
    def _parse_line(line_no: int, line: str) -> ReplayEvent | None:
        stripped = line.strip()
        if not stripped:
            return None
        try:
            obj: Any = json.loads(stripped)
        except ValueError:
            return ReplayEvent(line=line_no, body=stripped)
        if isinstance(obj, dict) and isinstance(obj.get("body"), str):
            return ReplayEvent(line=line_no, body=obj["body"])
        return ReplayEvent(line=line_no, body=stripped)

    def parse(self, transcript_path: Path) -> list[ReplayEvent]:
        events: list[ReplayEvent] = []
        for idx, line in enumerate(transcript_path.read_text(encoding="utf-8").splitlines(), start=1):
            event = self._parse_line(idx, line)
            if event is not None:
                events.append(event)
        return events

    def run(self, transcript_path: Path, strict: bool = True) -> ReplayReport:
        events = self.parse(transcript_path)
        report = ReplayReport(total_events=len(events))

        for event in events:
            try:
                raw = json.loads(event.body)
            except ValueError:
                raw = None
            if not isinstance(raw, dict):
                report.malformed += 1
                if strict:
                    report.errors.append(f"line {event.line}: malformed frame")
                continue

            snapshot = normalize_frame(raw)
            self.store.update(snapshot)
            report.accepted += 1
            report.max_devices = max(report.max_devices, len(snapshot.gpus))
            if report.first_timestamp == 0:
                report.first_timestamp = snapshot.timestamp
            if snapshot.timestamp < report.last_timestamp and strict:
                report.errors.append(f"line {event.line}: timestamp went backwards")
            report.last_timestamp = max(report.last_timestamp, snapshot.timestamp)

            for alert in evaluate_alerts(snapshot):
                report.alert_counts[alert.metric] = report.alert_counts.get(alert.metric, 0) + 1

        report.history_length = len(self.store.history())
        if strict and report.accepted < 1:
            report.errors.append("no_frames")
        return report
