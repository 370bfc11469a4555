"""Reshape raw stream frames into canonical snapshots and label GPU devices."""

from __future__ import annotations

import math
from typing import Any, Sequence

from .models import CpuStats, DiskStats, GpuStats, MemoryStats, NetworkStats, Snapshot


DEFAULT_LABEL_LENGTH = 20


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        out = float(value)
    elif isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return out if math.isfinite(out) else 0.0


def _percent(value: Any) -> float:
    return max(0.0, min(100.0, _number(value)))


def _rate(value: Any) -> float:
    return max(0.0, _number(value))


def _count(value: Any) -> int:
    return max(0, int(_number(value)))


def _temperature(value: Any) -> float | None:
    temp = _number(value)
    return temp if temp > 0 else None


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    return None


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def _cpu(raw: dict[str, Any]) -> CpuStats:
    return CpuStats(
        usage_percent=_percent(raw.get("usagePercent")),
        logical_processor_count=_count(raw.get("logicalProcessorCount")),
        name=_text(raw.get("name")),
        temperature_celsius=_temperature(raw.get("temperatureCelsius")),
    )


def _memory(raw: dict[str, Any]) -> MemoryStats:
    return MemoryStats(
        total_bytes=_count(raw.get("totalBytes")),
        used_bytes=_count(raw.get("usedBytes")),
        available_bytes=_count(raw.get("availableBytes")),
        usage_percent=_percent(raw.get("usagePercent")),
    )


def _gpu(raw: dict[str, Any]) -> GpuStats:
    return GpuStats(
        usage_percent=_percent(raw.get("usagePercent")),
        name=_text(raw.get("name")) or "",
        vram_used_bytes=_count(raw.get("vramUsedBytes")),
        vram_total_bytes=_count(raw.get("vramTotalBytes")),
        temperature_celsius=_temperature(raw.get("temperatureCelsius")),
    )


def _disk(raw: dict[str, Any]) -> DiskStats:
    return DiskStats(
        read_bytes_per_second=_rate(raw.get("readBytesPerSecond")),
        write_bytes_per_second=_rate(raw.get("writeBytesPerSecond")),
        total_bytes=_count(raw.get("totalBytes")),
        used_bytes=_count(raw.get("usedBytes")),
        usage_percent=_percent(raw.get("usagePercent")),
    )


def _network(raw: dict[str, Any]) -> NetworkStats:
    return NetworkStats(
        download_bytes_per_second=_rate(raw.get("downloadBytesPerSecond")),
        upload_bytes_per_second=_rate(raw.get("uploadBytesPerSecond")),
        total_bytes_received=_count(raw.get("totalBytesReceived")),
        total_bytes_sent=_count(raw.get("totalBytesSent")),
    )


def resolve_devices(raw: dict[str, Any]) -> tuple[GpuStats, ...]:
    """Prefer a non-empty ``gpus`` list, else fold the legacy ``gpu`` object in."""
    listed = raw.get("gpus")
    if isinstance(listed, list):
        devices = tuple(_gpu(item) for item in listed if isinstance(item, dict))
        if devices:
            return devices

    legacy = raw.get("gpu")
    if isinstance(legacy, dict):
        return (_gpu(legacy),)
    return ()


def normalize_frame(raw: Any) -> Snapshot:
    """Build a snapshot from a decoded frame. Never raises; bad fields become 0."""
    if not isinstance(raw, dict):
        return Snapshot.empty()

    return Snapshot(
        timestamp=_count(raw.get("timestamp")),
        cpu=_cpu(_section(raw, "cpu")),
        memory=_memory(_section(raw, "memory")),
        gpus=resolve_devices(raw),
        disk=_disk(_section(raw, "disk")),
        network=_network(_section(raw, "network")),
    )


def device_label(devices: Sequence[GpuStats], index: int, max_len: int = DEFAULT_LABEL_LENGTH) -> str:
    """Display label for ``devices[index]``.

    Devices sharing an identical trimmed name get their 1-based position in the
    whole list appended, so labels stay unique without a per-name counter.
    """
    name = (devices[index].name or "").strip()
    if not name:
        return f"GPU {index + 1}"

    short_name = name[: max(0, max_len)]
    same_name = sum(1 for d in devices if (d.name or "").strip() == name)
    if same_name > 1:
        return f"{short_name} ({index + 1})"
    return short_name


def device_labels(devices: Sequence[GpuStats], max_len: int = DEFAULT_LABEL_LENGTH) -> list[str]:
    return [device_label(devices, idx, max_len) for idx in range(len(devices))]
