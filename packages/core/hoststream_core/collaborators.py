"""HTTP queries against the telemetry backend's process-list and info endpoints."""

from __future__ import annotations

import json
import logging
import os
import ssl
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any

import certifi


logger = logging.getLogger("hoststream.collaborators")

PROCESS_KINDS = ("cpu", "memory", "disk")
UNAVAILABLE_KINDS = {
    "gpu": "Per-application GPU usage is not available on this system.",
    "network": "Per-application network usage is not available on this system.",
}
NOT_FOUND_MESSAGE = "Process list not available. Restart the backend and try again."


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cpu_percent: float
    memory_bytes: int
    disk_read_bytes: int
    disk_write_bytes: int


@dataclass
class ProcessQueryResult:
    kind: str
    processes: list[ProcessInfo] = field(default_factory=list)
    error: str | None = None
    available: bool = True


def _build_ssl_context() -> ssl.SSLContext:
    if os.environ.get("HOSTSTREAM_ALLOW_INSECURE_TLS", "").strip() == "1":
        return ssl._create_unverified_context()

    ca_bundle = os.environ.get("HOSTSTREAM_CA_BUNDLE", "").strip()
    return ssl.create_default_context(cafile=ca_bundle or certifi.where())


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _process(raw: dict[str, Any]) -> ProcessInfo:
    return ProcessInfo(
        pid=_as_int(raw.get("pid")),
        name=str(raw.get("name") or ""),
        cpu_percent=_as_float(raw.get("cpuPercent")),
        memory_bytes=_as_int(raw.get("memoryBytes")),
        disk_read_bytes=_as_int(raw.get("diskReadBytes")),
        disk_write_bytes=_as_int(raw.get("diskWriteBytes")),
    )


class ApiClient:
    """Thin client for the backend REST endpoints. Failures stay scoped to one query."""

    def __init__(self, base_url: str = "http://localhost:8081", timeout_s: int = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        context = _build_ssl_context() if url.startswith("https:") else None
        with urllib.request.urlopen(req, timeout=self.timeout_s, context=context) as resp:
            return json.loads(resp.read().decode("utf-8"))

    def fetch_processes(self, kind: str, limit: int = 25) -> ProcessQueryResult:
        kind = kind.lower()
        if kind in UNAVAILABLE_KINDS:
            return ProcessQueryResult(kind=kind, error=UNAVAILABLE_KINDS[kind], available=False)
        if kind not in PROCESS_KINDS:
            return ProcessQueryResult(kind=kind, error=f"Unknown resource kind: {kind}", available=False)

        limit = max(1, min(100, int(limit)))
        try:
            payload = self._get_json("/api/processes", {"sort": kind, "limit": limit})
        except urllib.error.HTTPError as exc:
            message = NOT_FOUND_MESSAGE if exc.code == 404 else (exc.reason or "Request failed")
            logger.warning("process query failed: %s", message, extra={"event": "process_query_error"})
            return ProcessQueryResult(kind=kind, error=str(message))
        except (urllib.error.URLError, OSError, ValueError) as exc:
            logger.warning("process query failed: %s", exc, extra={"event": "process_query_error"})
            return ProcessQueryResult(kind=kind, error=str(exc) or "Failed to load processes")

        rows = payload if isinstance(payload, list) else []
        return ProcessQueryResult(kind=kind, processes=[_process(r) for r in rows if isinstance(r, dict)])

    def fetch_info(self) -> str | None:
        """Backend version string, or ``None`` when it cannot be determined."""
        try:
            payload = self._get_json("/api/info")
        except (urllib.error.URLError, OSError, ValueError) as exc:
            logger.info("info query failed: %s", exc, extra={"event": "info_query_error"})
            return None
        if not isinstance(payload, dict):
            return None
        version = payload.get("version")
        return str(version) if version else None
