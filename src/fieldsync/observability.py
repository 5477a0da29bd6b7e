"""
observability.py - Logging and metrics for fieldsync.

Provides:
- In-process counters and gauges with Prometheus text export
- Structured JSON logging
- SyncLogger with helpers for the sync events worth recording
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field


# =============================================================================
# Metric Types
# =============================================================================

@dataclass
class MetricValue:
    """Single metric value with labels."""
    name: str
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class Counter:
    """Prometheus-style counter metric."""

    def __init__(self, name: str, help_text: str, labels: list[str] | None = None):
        self.name = name
        self.help = help_text
        self.labels = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def inc(self, value: float = 1, **label_values) -> None:
        key = self._label_key(label_values)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def get(self, **label_values) -> float:
        return self._values.get(self._label_key(label_values), 0)

    def collect(self) -> list[MetricValue]:
        with self._lock:
            return [
                MetricValue(name=self.name, value=value, labels=dict(zip(self.labels, key)))
                for key, value in self._values.items()
            ]

    def _label_key(self, label_values: dict) -> tuple:
        return tuple(label_values.get(l, "") for l in self.labels)


class Gauge(Counter):
    """Prometheus-style gauge metric."""

    def set(self, value: float, **label_values) -> None:
        key = self._label_key(label_values)
        with self._lock:
            self._values[key] = value

    def dec(self, value: float = 1, **label_values) -> None:
        self.inc(-value, **label_values)


class MetricsRegistry:
    """Registry of named metrics sharing a prefix."""

    def __init__(self, prefix: str = "fieldsync"):
        self.prefix = prefix
        self._metrics: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, labels: list[str] | None = None) -> Counter:
        return self._register(Counter, name, help_text, labels)

    def gauge(self, name: str, help_text: str, labels: list[str] | None = None) -> Gauge:
        return self._register(Gauge, name, help_text, labels)

    def _register(self, kind, name, help_text, labels):
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._metrics:
                self._metrics[full_name] = kind(full_name, help_text, labels)
            return self._metrics[full_name]

    def collect_all(self) -> list[MetricValue]:
        results = []
        with self._lock:
            for metric in self._metrics.values():
                results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        for metric in self.collect_all():
            if metric.labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in metric.labels.items())
                lines.append(f"{metric.name}{{{label_str}}} {metric.value}")
            else:
                lines.append(f"{metric.name} {metric.value}")
        return "\n".join(lines)


# =============================================================================
# Pre-defined Sync Metrics
# =============================================================================

_registry = MetricsRegistry()

outbox_entries_total = _registry.counter(
    "outbox_entries_total",
    "Outbox entries enqueued by local mutations",
    labels=["table", "operation"],
)

upload_results_total = _registry.counter(
    "upload_results_total",
    "Outbox entries processed by the upload engine",
    labels=["table", "status"],
)

sync_sessions_total = _registry.counter(
    "sync_sessions_total",
    "Orchestrated sync sessions by final state",
    labels=["state"],
)

pending_changes = _registry.gauge(
    "pending_changes",
    "Unsynced outbox entries, including quarantined ones",
)


def get_registry() -> MetricsRegistry:
    """Get the global metrics registry."""
    return _registry


# =============================================================================
# Structured Logging
# =============================================================================

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
})


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self._hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self._hostname,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _RESERVED_ATTRS:
                    log_data[key] = value
        return json.dumps(log_data, default=str)


class SyncLogger:
    """
    Structured logger for sync events.

    Each helper logs one event with machine-readable extras and
    updates the matching metric.
    """

    def __init__(self, name: str = "fieldsync.sync"):
        self._logger = logging.getLogger(name)

    def session_started(self, trigger: str) -> None:
        self._logger.info(
            f"Sync session started ({trigger})",
            extra={"event": "session_started", "trigger": trigger},
        )

    def session_completed(self, uploaded: int, downloaded: int, duration_ms: float) -> None:
        self._logger.info(
            f"Sync session completed: uploaded={uploaded}, downloaded={downloaded}",
            extra={
                "event": "session_completed",
                "uploaded": uploaded,
                "downloaded": downloaded,
                "duration_ms": duration_ms,
            },
        )
        sync_sessions_total.inc(state="complete")

    def session_failed(self, error: str) -> None:
        self._logger.error(
            f"Sync session failed: {error}",
            extra={"event": "session_failed", "error": error},
        )
        sync_sessions_total.inc(state="error")

    def session_offline(self) -> None:
        self._logger.warning("Sync session found no connectivity", extra={"event": "session_offline"})
        sync_sessions_total.inc(state="offline")

    def entry_failed(self, entry_id: int, table_name: str, error: str, retry_count: int) -> None:
        self._logger.warning(
            f"Outbox entry {entry_id} ({table_name}) failed: {error}",
            extra={
                "event": "entry_failed",
                "entry_id": entry_id,
                "table_name": table_name,
                "error": error,
                "retry_count": retry_count,
            },
        )
        upload_results_total.inc(table=table_name, status="failed")

    def entry_synced(self, entry_id: int, table_name: str) -> None:
        self._logger.debug(
            f"Outbox entry {entry_id} ({table_name}) synced",
            extra={"event": "entry_synced", "entry_id": entry_id, "table_name": table_name},
        )
        upload_results_total.inc(table=table_name, status="synced")

    def download_applied(self, counts: dict[str, int]) -> None:
        self._logger.info(
            f"Download applied: {sum(counts.values())} rows across {len(counts)} tables",
            extra={"event": "download_applied", "counts": counts},
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting on the console
        log_file: Optional log file path (always JSON)
    """
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    if json_format:
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    handlers.append(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True,
    )
