"""Telemetry snapshot models, frame normalization, and the local frame source."""

from .models import CpuStats, DiskStats, GpuStats, MemoryStats, NetworkStats, Snapshot
from .normalizer import device_label, device_labels, normalize_frame, resolve_devices
from .provider import LocalFrameSource

__all__ = [
    "CpuStats",
    "DiskStats",
    "GpuStats",
    "LocalFrameSource",
    "MemoryStats",
    "NetworkStats",
    "Snapshot",
    "device_label",
    "device_labels",
    "normalize_frame",
    "resolve_devices",
]
