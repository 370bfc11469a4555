"""Typed telemetry snapshot models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CpuStats:
    usage_percent: float = 0.0
    logical_processor_count: int = 0
    name: str | None = None
    temperature_celsius: float | None = None


@dataclass(frozen=True)
class MemoryStats:
    total_bytes: int = 0
    used_bytes: int = 0
    available_bytes: int = 0
    usage_percent: float = 0.0


@dataclass(frozen=True)
class GpuStats:
    usage_percent: float = 0.0
    name: str = ""
    vram_used_bytes: int = 0
    vram_total_bytes: int = 0
    temperature_celsius: float | None = None


@dataclass(frozen=True)
class DiskStats:
    read_bytes_per_second: float = 0.0
    write_bytes_per_second: float = 0.0
    total_bytes: int = 0
    used_bytes: int = 0
    usage_percent: float = 0.0


@dataclass(frozen=True)
class NetworkStats:
    download_bytes_per_second: float = 0.0
    upload_bytes_per_second: float = 0.0
    total_bytes_received: int = 0
    total_bytes_sent: int = 0


@dataclass(frozen=True)
class Snapshot:
    """One normalized measurement instant.

    ``timestamp`` is epoch milliseconds; ``0`` marks the "no data yet" default.
    ``gpus`` keeps the producer's device order. Single-value consumers (alerts,
    CSV export, console summary) use the first device only.
    """

    timestamp: int = 0
    cpu: CpuStats = CpuStats()
    memory: MemoryStats = MemoryStats()
    gpus: tuple[GpuStats, ...] = ()
    disk: DiskStats = DiskStats()
    network: NetworkStats = NetworkStats()

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    @property
    def primary_gpu(self) -> GpuStats | None:
        return self.gpus[0] if self.gpus else None

    @property
    def has_data(self) -> bool:
        return self.timestamp != 0
