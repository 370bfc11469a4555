"""Persistent client settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


CONFIG_VERSION = 2


@dataclass
class ServerConfig:
    ws_url: str = "http://localhost:8081/ws"
    api_url: str = "http://localhost:8081"
    topic: str = "/topic/stats"


@dataclass
class StreamConfig:
    reconnect_delay_ms: int = 3000
    connect_timeout_ms: int = 5000
    heartbeat_incoming_ms: int = 4000
    heartbeat_outgoing_ms: int = 4000
    local_interval_ms: int = 1000


@dataclass
class ExportConfig:
    output_dir: str | None = None


@dataclass
class ProcessesConfig:
    limit: int = 25
    timeout_s: int = 10


@dataclass
class ConsoleConfig:
    gpu_label_length: int = 20
    show_alerts: bool = True


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7
    max_bundle_mb: int = 20


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    processes: ProcessesConfig = field(default_factory=ProcessesConfig)
    console: ConsoleConfig = field(default_factory=ConsoleConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


def app_dir() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "HostStream"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "HostStream"
    return Path.home() / ".config" / "hoststream"


def config_path() -> Path:
    return app_dir() / "config.json"


def default_export_dir(cfg: AppConfig) -> Path:
    if cfg.export.output_dir:
        return Path(cfg.export.output_dir).expanduser()
    return app_dir() / "exports"


def _merge(dataclass_type, raw: Any):
    defaults = dataclass_type()  # type: ignore[misc]
    if not isinstance(raw, dict):
        return defaults
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _to_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _clamp_int(section: Any, name: str, low: int, high: int | None = None) -> None:
    # Unparseable values fall back to the field default before clamping.
    value = _to_int(getattr(section, name), getattr(type(section)(), name))
    if high is not None:
        value = min(high, value)
    setattr(section, name, max(low, value))


def _normalize_stream(cfg: AppConfig) -> None:
    _clamp_int(cfg.stream, "reconnect_delay_ms", 100)
    _clamp_int(cfg.stream, "connect_timeout_ms", 100)
    _clamp_int(cfg.stream, "heartbeat_incoming_ms", 0)
    _clamp_int(cfg.stream, "heartbeat_outgoing_ms", 0)
    _clamp_int(cfg.stream, "local_interval_ms", 100, 60000)


def _normalize_processes(cfg: AppConfig) -> None:
    _clamp_int(cfg.processes, "limit", 1, 100)
    _clamp_int(cfg.processes, "timeout_s", 1)


def _normalize_console(cfg: AppConfig) -> None:
    _clamp_int(cfg.console, "gpu_label_length", 4)
    if not isinstance(cfg.console.show_alerts, bool):
        cfg.console.show_alerts = ConsoleConfig().show_alerts


def _normalize_diagnostics(cfg: AppConfig) -> None:
    _clamp_int(cfg.diagnostics, "keep_log_files", 1)
    _clamp_int(cfg.diagnostics, "max_bundle_mb", 1)


def _apply_env(cfg: AppConfig) -> None:
    ws_url = os.environ.get("HOSTSTREAM_WS_URL", "").strip()
    if ws_url:
        cfg.server.ws_url = ws_url
    api_url = os.environ.get("HOSTSTREAM_API_URL", "").strip()
    if api_url:
        cfg.server.api_url = api_url


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = _to_int(raw.get("config_version", 1), 1)
    data = dict(raw)

    if version < 2:
        # v1 kept a single "endpoint" base URL and a flat reconnect delay.
        server = dict(data["server"]) if isinstance(data.get("server"), dict) else {}
        endpoint = data.pop("endpoint", None)
        if endpoint:
            base = str(endpoint).rstrip("/")
            server.setdefault("api_url", base)
            server.setdefault("ws_url", f"{base}/ws")
        data["server"] = server

        stream = dict(data["stream"]) if isinstance(data.get("stream"), dict) else {}
        delay = data.pop("reconnect_delay_ms", None)
        if delay is not None:
            stream.setdefault("reconnect_delay_ms", delay)
        data["stream"] = stream
        data["config_version"] = 2

    return data


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        cfg = AppConfig()
        _apply_env(cfg)
        return cfg

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        raw = {}
    if not isinstance(raw, dict):
        raw = {}

    data = _migrate(raw)
    cfg = AppConfig(
        config_version=_to_int(data.get("config_version"), CONFIG_VERSION),
        server=_merge(ServerConfig, data.get("server", {})),
        stream=_merge(StreamConfig, data.get("stream", {})),
        export=_merge(ExportConfig, data.get("export", {})),
        processes=_merge(ProcessesConfig, data.get("processes", {})),
        console=_merge(ConsoleConfig, data.get("console", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
    )

    _normalize_stream(cfg)
    _normalize_processes(cfg)
    _normalize_console(cfg)
    _normalize_diagnostics(cfg)
    _apply_env(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
