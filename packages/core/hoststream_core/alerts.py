"""Fixed-threshold alerts derived from a single snapshot."""

from __future__ import annotations

from dataclasses import dataclass

from hoststream_stream.models import ConnectionState
from hoststream_telemetry.models import Snapshot


CPU_THRESHOLD = 90.0
RAM_THRESHOLD = 80.0
GPU_THRESHOLD = 85.0


@dataclass(frozen=True)
class Alert:
    metric: str
    value: float
    threshold: float
    message: str


def _alert(metric: str, label: str, value: float, threshold: float) -> Alert:
    return Alert(
        metric=metric,
        value=value,
        threshold=threshold,
        message=f"{label}: {value:.1f}% (threshold {threshold:g}%)",
    )


def evaluate_alerts(snapshot: Snapshot) -> list[Alert]:
    """Strict greater-than checks in fixed CPU, RAM, GPU order.

    Only the first device is checked for GPU, matching the single-value GPU
    figure shown and exported elsewhere.
    """
    alerts: list[Alert] = []
    cpu = snapshot.cpu.usage_percent
    ram = snapshot.memory.usage_percent
    gpu = snapshot.primary_gpu

    if cpu > CPU_THRESHOLD:
        alerts.append(_alert("cpu", "CPU usage critical", cpu, CPU_THRESHOLD))
    if ram > RAM_THRESHOLD:
        alerts.append(_alert("memory", "RAM usage high", ram, RAM_THRESHOLD))
    if gpu is not None and gpu.usage_percent > GPU_THRESHOLD:
        alerts.append(_alert("gpu", "GPU usage critical", gpu.usage_percent, GPU_THRESHOLD))
    return alerts


def evaluate(snapshot: Snapshot) -> list[str]:
    return [alert.message for alert in evaluate_alerts(snapshot)]


def should_evaluate(state: ConnectionState) -> bool:
    """Alerts are only meaningful for live data; callers skip them otherwise."""
    return state == ConnectionState.CONNECTED
