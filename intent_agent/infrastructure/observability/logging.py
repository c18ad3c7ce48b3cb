import structlog
import logging
import sys
from typing import Dict, Any, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "cdnbuddy-intent"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    # unbound request context leaves an empty session id behind
    if event_dict.get("session_id") == "":
        del event_dict["session_id"]

    return event_dict


def bind_request_context(request_id: str, session_id: Optional[str] = None) -> None:
    """Bind per-message identifiers for every log line of the current task"""

    structlog.contextvars.bind_contextvars(request_id=request_id, session_id=session_id or "")


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars("request_id", "session_id")


metrics_logger = structlog.get_logger("intent_agent.metrics")


def _metric_key(name: str, tags: Optional[Dict[str, str]]) -> str:
    # counters are split per tag set: "replies{status=READY}"
    if not tags:
        return name
    labels = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}{{{labels}}}"


@dataclass
class LatencyStat:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def observe(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms if self.count else 0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """Collect and export metrics as log events"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStat] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        self.latencies.setdefault(f"latency.{operation}", LatencyStat()).observe(duration_ms)
        metrics_logger.debug("metric", metric_type="latency", operation=operation, duration_ms=duration_ms, tags=tags or {})

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        key = _metric_key(name, tags)
        self.counters[key] = self.counters.get(key, 0) + value
        metrics_logger.debug("metric", metric_type="counter", name=name, value=value, tags=tags or {})

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Set a gauge metric"""

        self.gauges[_metric_key(name, tags)] = value
        metrics_logger.debug("metric", metric_type="gauge", name=name, value=value, tags=tags or {})

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary: Dict[str, Any] = {key: stat.summary() for key, stat in self.latencies.items()}
        summary.update(self.counters)
        summary.update(self.gauges)
        return summary

    def reset(self):
        self.latencies.clear()
        self.counters.clear()
        self.gauges.clear()


# Global metrics collector
metrics = MetricsCollector()
