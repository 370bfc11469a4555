"""Console monitor session wiring the store, connection manager, and collaborators."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from hoststream_core import (
    ApiClient,
    AppConfig,
    ConnectionManager,
    DiagnosticsExporter,
    HistoryStore,
    build_doctor_payload,
    evaluate,
    should_evaluate,
)
from hoststream_core.logging_setup import get_logger
from hoststream_stream import ConnectionState, LoopbackTransport, StreamTransport, WebSocketTransport
from hoststream_telemetry import LocalFrameSource, Snapshot, device_label


def format_bytes(value: float) -> str:
    if value >= 1e9:
        return f"{value / 1e9:.2f} GB"
    if value >= 1e6:
        return f"{value / 1e6:.2f} MB"
    if value >= 1e3:
        return f"{value / 1e3:.2f} KB"
    return f"{int(value)} B"


def summary_line(snapshot: Snapshot, label_length: int = 20) -> str:
    cpu = snapshot.cpu
    mem = snapshot.memory
    disk = snapshot.disk
    net = snapshot.network

    parts = [
        f"CPU {cpu.usage_percent:5.1f}%",
        f"RAM {mem.usage_percent:5.1f}% ({format_bytes(mem.used_bytes)}/{format_bytes(mem.total_bytes)})",
    ]
    if snapshot.gpus:
        label = device_label(snapshot.gpus, 0, label_length)
        extra = f" +{len(snapshot.gpus) - 1}" if len(snapshot.gpus) > 1 else ""
        parts.append(f"GPU {label} {snapshot.gpus[0].usage_percent:5.1f}%{extra}")
    else:
        parts.append("GPU --")
    parts.append(
        f"DISK {disk.usage_percent:5.1f}% r {format_bytes(disk.read_bytes_per_second)}/s"
        f" w {format_bytes(disk.write_bytes_per_second)}/s"
    )
    parts.append(
        f"NET down {format_bytes(net.download_bytes_per_second)}/s"
        f" up {format_bytes(net.upload_bytes_per_second)}/s"
    )
    return " | ".join(parts)


class MonitorSession:
    def __init__(
        self,
        cfg: AppConfig,
        local: bool = False,
        emit: Callable[[str], None] = print,
        transport_factory: Callable[[], StreamTransport] | None = None,
        client: ApiClient | None = None,
        scheduler=None,
        quiet: bool = False,
    ) -> None:
        self.config = cfg
        self.local = local
        self.emit = emit
        self.quiet = quiet
        self.logger = get_logger()
        self.store = HistoryStore()
        self.client = client or ApiClient(cfg.server.api_url, timeout_s=cfg.processes.timeout_s)
        self.alerts_seen = 0
        self.manager = ConnectionManager(
            store=self.store,
            transport_factory=transport_factory or self._default_transport_factory(),
            topic=cfg.server.topic,
            reconnect_delay_ms=cfg.stream.reconnect_delay_ms,
            connect_timeout_ms=cfg.stream.connect_timeout_ms,
            scheduler=scheduler,
            on_frame=self._on_frame,
            on_connection_change=self._on_connection_change,
        )

    def _default_transport_factory(self) -> Callable[[], StreamTransport]:
        cfg = self.config
        if self.local:
            source = LocalFrameSource()
            return lambda: LoopbackTransport(source.poll, interval_ms=cfg.stream.local_interval_ms)

        heartbeat = (cfg.stream.heartbeat_outgoing_ms, cfg.stream.heartbeat_incoming_ms)
        return lambda: WebSocketTransport(cfg.server.ws_url, heartbeat=heartbeat)

    def _on_frame(self, snapshot: Snapshot) -> None:
        if not self.quiet:
            self.emit(summary_line(snapshot, self.config.console.gpu_label_length))
        if not self.config.console.show_alerts or not should_evaluate(self.manager.state):
            return
        for message in evaluate(snapshot):
            self.alerts_seen += 1
            self.emit(f"ALERT {message}")

    def _on_connection_change(self, state: ConnectionState, error: str | None) -> None:
        if error and state != ConnectionState.CONNECTED:
            self.emit(f"[{state.value}] {error}")
        else:
            self.emit(f"[{state.value}]")

    def version_banner(self) -> str | None:
        version = self.client.fetch_info()
        return f"Backend v{version}" if version else None

    def run(self, seconds: float | None = None) -> HistoryStore:
        """Stream until ``seconds`` elapse or the user interrupts; always stops the manager."""
        self.manager.start()
        deadline = None if seconds is None else time.monotonic() + max(0.0, seconds)
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.2)
        except KeyboardInterrupt:
            self.logger.info("interrupted", extra={"event": "session_interrupted"})
        finally:
            self.manager.stop()
        return self.store

    def export_diagnostics(self, output_dir: Path | None = None) -> Path:
        """Bundle the doctor report with this session's connection events and history window."""
        doctor = build_doctor_payload(self.config, self.client)
        doctor["stream"] = {
            "state": self.manager.state.value,
            "last_error": self.manager.last_error,
            "attempts": self.manager.status.attempts,
            "frames_accepted": self.manager.status.frames_accepted,
            "frames_dropped": self.manager.status.frames_dropped,
        }
        return DiagnosticsExporter().bundle(
            cfg=self.config,
            doctor_payload=doctor,
            recent_connection_events=self.manager.recent_events(),
            history=self.store.history(),
            output_dir=output_dir,
        )
