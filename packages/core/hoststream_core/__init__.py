"""Core client services: history, alerts, export, connection lifecycle, settings, and diagnostics."""

from .alerts import Alert, evaluate, evaluate_alerts, should_evaluate
from .collaborators import ApiClient, ProcessInfo, ProcessQueryResult
from .config import AppConfig, default_export_dir, load_config, save_config
from .connection import ConnectionManager, ConnectionStatus, TimerScheduler
from .diagnostics import DiagnosticsExporter, build_doctor_payload
from .exporter import CSV_COLUMNS, export_csv, export_filename, write_csv
from .history import HISTORY_CAPACITY, HistoryStore
from .replay import ReplayReport, ReplayRunner

__all__ = [
    "Alert",
    "ApiClient",
    "AppConfig",
    "CSV_COLUMNS",
    "ConnectionManager",
    "ConnectionStatus",
    "DiagnosticsExporter",
    "HISTORY_CAPACITY",
    "HistoryStore",
    "ProcessInfo",
    "ProcessQueryResult",
    "ReplayReport",
    "ReplayRunner",
    "TimerScheduler",
    "build_doctor_payload",
    "default_export_dir",
    "evaluate",
    "evaluate_alerts",
    "export_csv",
    "export_filename",
    "load_config",
    "save_config",
    "should_evaluate",
    "write_csv",
]
