"""Doctor report and offline support bundle."""

from __future__ import annotations

import json
import platform
import re
import tempfile
import zipfile
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from hoststream_stream.transport import to_websocket_url
from hoststream_telemetry.models import Snapshot

from .collaborators import ApiClient
from .config import AppConfig, config_path
from .exporter import export_csv
from .logging_setup import log_dir


_SECRET_RE = re.compile(r"(token|secret|password|apikey|api_key|auth)", re.IGNORECASE)
_MASK = "***REDACTED***"


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(redact(value), indent=2, sort_keys=True, default=_jsonable)


def redact(value: Any) -> Any:
    """Mask values whose key looks like a credential, recursively."""
    if isinstance(value, dict):
        return {k: (_MASK if _SECRET_RE.search(str(k)) else redact(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def _runtime() -> dict[str, str]:
    return {"platform": platform.platform(), "python": platform.python_version()}


def build_doctor_payload(cfg: AppConfig, client: ApiClient | None = None) -> dict[str, Any]:
    client = client or ApiClient(cfg.server.api_url, timeout_s=cfg.processes.timeout_s)
    version = client.fetch_info()
    return {
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        **_runtime(),
        "config": redact(asdict(cfg)),
        "endpoints": {
            "stream": to_websocket_url(cfg.server.ws_url),
            "topic": cfg.server.topic,
            "api": cfg.server.api_url,
        },
        "backend": {"reachable": version is not None, "version": version},
    }


class DiagnosticsExporter:
    def __init__(self, app_name: str = "HostStream") -> None:
        self.app_name = app_name

    def _pick_logs(self, budget_bytes: int) -> list[Path]:
        # Newest files first until the size budget is spent.
        picked: list[Path] = []
        used = 0
        for item in sorted(log_dir().glob("*.log*"), key=lambda p: p.stat().st_mtime, reverse=True):
            size = item.stat().st_size
            if used + size > budget_bytes:
                break
            picked.append(item)
            used += size
        return picked

    def bundle(
        self,
        cfg: AppConfig,
        doctor_payload: dict[str, Any],
        recent_connection_events: list[dict[str, Any]] | None = None,
        history: Sequence[Snapshot] = (),
        output_dir: Path | None = None,
    ) -> Path:
        target_dir = output_dir or Path(tempfile.gettempdir())
        target_dir.mkdir(parents=True, exist_ok=True)
        zip_path = target_dir / f"hoststream-diagnostics-{datetime.now():%Y%m%d-%H%M%S}.zip"

        manifest = {
            "app": self.app_name,
            "created_utc": datetime.now(timezone.utc).isoformat(),
            **_runtime(),
            "config_path": str(config_path()),
            "log_dir": str(log_dir()),
            "history_rows": len(history),
        }
        members = {
            "manifest.json": _dumps(manifest),
            "doctor.json": _dumps(doctor_payload),
            "config.redacted.json": _dumps(asdict(cfg)),
            "connection_events.json": _dumps(recent_connection_events or []),
        }
        history_csv = export_csv(history)
        if history_csv:
            members["history.csv"] = history_csv

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, text in members.items():
                zf.writestr(name, text)
            for item in self._pick_logs(max(1, cfg.diagnostics.max_bundle_mb) * 1024 * 1024):
                zf.write(item, arcname=f"logs/{item.name}")

        return zip_path
