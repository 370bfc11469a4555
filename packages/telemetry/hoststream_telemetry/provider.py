"""Local host frame source with graceful GPU fallbacks.

Produces frames in the same wire shape the telemetry backend publishes, so a
local run goes through the exact normalization and history path of a remote one.
"""

from __future__ import annotations

import platform
import time
from dataclasses import dataclass
from typing import Any

import psutil


class _GpuAdapter:
    def poll(self) -> list[dict[str, Any]]:
        return []


class _NvmlGpuAdapter(_GpuAdapter):
    def __init__(self) -> None:
        import pynvml  # type: ignore

        self._nvml = pynvml
        pynvml.nvmlInit()

    def _device(self, index: int) -> dict[str, Any]:
        nvml = self._nvml
        h = nvml.nvmlDeviceGetHandleByIndex(index)
        util = nvml.nvmlDeviceGetUtilizationRates(h)
        mem = nvml.nvmlDeviceGetMemoryInfo(h)
        name = nvml.nvmlDeviceGetName(h)
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        try:
            temp = float(nvml.nvmlDeviceGetTemperature(h, nvml.NVML_TEMPERATURE_GPU))
        except Exception:
            temp = None
        return {
            "usagePercent": float(util.gpu),
            "name": name,
            "vramUsedBytes": int(mem.used),
            "vramTotalBytes": int(mem.total),
            "temperatureCelsius": temp,
        }

    def poll(self) -> list[dict[str, Any]]:
        count = self._nvml.nvmlDeviceGetCount()
        return [self._device(idx) for idx in range(count)]


def _build_gpu_adapter() -> _GpuAdapter:
    try:
        return _NvmlGpuAdapter()
    except Exception:
        return _GpuAdapter()


def _cpu_temp_c() -> float | None:
    try:
        temps = psutil.sensors_temperatures()
    except Exception:
        return None
    if not temps:
        return None

    for name in ("coretemp", "cpu_thermal", "k10temp", "acpitz"):
        entries = temps.get(name)
        if entries:
            val = entries[0].current
            return float(val) if val is not None else None

    for _name, entries in temps.items():
        if entries and entries[0].current is not None:
            return float(entries[0].current)
    return None


@dataclass
class _CounterSnapshot:
    ts: float
    net_sent: int
    net_recv: int
    disk_read: int
    disk_write: int


class LocalFrameSource:
    """Polls this host with psutil and emits wire-shaped frames (camelCase, bytes/s)."""

    def __init__(self, disk_path: str = "/") -> None:
        now = time.monotonic()
        net = psutil.net_io_counters()
        disk = psutil.disk_io_counters()
        self._prev = _CounterSnapshot(
            ts=now,
            net_sent=(net.bytes_sent if net else 0),
            net_recv=(net.bytes_recv if net else 0),
            disk_read=(disk.read_bytes if disk else 0),
            disk_write=(disk.write_bytes if disk else 0),
        )
        self._disk_path = disk_path
        self._gpu = _build_gpu_adapter()
        self._cpu_name = platform.processor() or None
        # Prime the non-blocking CPU measurement.
        psutil.cpu_percent(interval=None)

    def poll(self) -> dict[str, Any]:
        now_monotonic = time.monotonic()
        elapsed = max(now_monotonic - self._prev.ts, 1e-6)

        vm = psutil.virtual_memory()
        du = psutil.disk_usage(self._disk_path)

        dio = psutil.disk_io_counters()
        if dio:
            read_bps = max(dio.read_bytes - self._prev.disk_read, 0) / elapsed
            write_bps = max(dio.write_bytes - self._prev.disk_write, 0) / elapsed
            disk_read = dio.read_bytes
            disk_write = dio.write_bytes
        else:
            read_bps = 0.0
            write_bps = 0.0
            disk_read = self._prev.disk_read
            disk_write = self._prev.disk_write

        net = psutil.net_io_counters()
        if net:
            up_bps = max(net.bytes_sent - self._prev.net_sent, 0) / elapsed
            down_bps = max(net.bytes_recv - self._prev.net_recv, 0) / elapsed
            net_sent = net.bytes_sent
            net_recv = net.bytes_recv
        else:
            up_bps = 0.0
            down_bps = 0.0
            net_sent = self._prev.net_sent
            net_recv = self._prev.net_recv

        self._prev = _CounterSnapshot(
            ts=now_monotonic,
            net_sent=net_sent,
            net_recv=net_recv,
            disk_read=disk_read,
            disk_write=disk_write,
        )

        gpus = self._gpu.poll()
        return {
            "timestamp": int(time.time() * 1000),
            "cpu": {
                "name": self._cpu_name,
                "usagePercent": float(psutil.cpu_percent(interval=None)),
                "logicalProcessorCount": psutil.cpu_count(logical=True) or 0,
                "temperatureCelsius": _cpu_temp_c(),
            },
            "memory": {
                "totalBytes": int(vm.total),
                "usedBytes": int(vm.used),
                "availableBytes": int(vm.available),
                "usagePercent": float(vm.percent),
            },
            "gpu": (gpus[0] if gpus else None),
            "gpus": gpus,
            "disk": {
                "readBytesPerSecond": read_bps,
                "writeBytesPerSecond": write_bps,
                "totalBytes": int(du.total),
                "usedBytes": int(du.used),
                "usagePercent": float(du.percent),
            },
            "network": {
                "downloadBytesPerSecond": down_bps,
                "uploadBytesPerSecond": up_bps,
                "totalBytesReceived": int(net_recv),
                "totalBytesSent": int(net_sent),
            },
        }
