"""CSV export of the buffered history window."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Sequence

from hoststream_telemetry.models import Snapshot


CSV_COLUMNS = (
    "timestamp",
    "cpu_usage_percent",
    "memory_usage_percent",
    "memory_used_bytes",
    "memory_total_bytes",
    "gpu_usage_percent",
    "gpu_name",
    "disk_usage_percent",
    "disk_read_bps",
    "disk_write_bps",
    "network_download_bps",
    "network_upload_bps",
)


def _num(value: int | float | None) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _quoted(value: str | None) -> str:
    return '"' + (value or "").replace('"', '""') + '"'


def _row(snapshot: Snapshot) -> str:
    gpu = snapshot.primary_gpu
    fields = [
        _num(snapshot.timestamp),
        _num(snapshot.cpu.usage_percent),
        _num(snapshot.memory.usage_percent),
        _num(snapshot.memory.used_bytes),
        _num(snapshot.memory.total_bytes),
        _num(gpu.usage_percent if gpu is not None else None),
        _quoted(gpu.name if gpu is not None else None),
        _num(snapshot.disk.usage_percent),
        _num(snapshot.disk.read_bytes_per_second),
        _num(snapshot.disk.write_bytes_per_second),
        _num(snapshot.network.download_bytes_per_second),
        _num(snapshot.network.upload_bytes_per_second),
    ]
    return ",".join(fields)


def export_csv(history: Sequence[Snapshot]) -> str:
    """Render the history as CSV text; an empty history renders as ``""``.

    Output depends only on the ordered input, so repeated calls are byte-identical.
    """
    if not history:
        return ""
    lines = [",".join(CSV_COLUMNS)]
    lines.extend(_row(snapshot) for snapshot in history)
    return "\n".join(lines)


def export_filename(now_ms: int | None = None) -> str:
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    return f"system-stats-{stamp}.csv"


def write_csv(history: Sequence[Snapshot], output_dir: Path, now_ms: int | None = None) -> Path | None:
    content = export_csv(history)
    if not content:
        return None
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / export_filename(now_ms)
    path.write_bytes(content.encode("utf-8"))
    return path
