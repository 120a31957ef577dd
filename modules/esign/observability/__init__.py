"""E-Sign observability: metrics counters and structured operation logs."""
from modules.esign.observability.metrics import InMemoryMetrics, MetricsSnapshot, get_metrics
from modules.esign.observability.operation_log import log_operation, resolve_correlation_id

__all__ = ["InMemoryMetrics", "MetricsSnapshot", "get_metrics", "log_operation", "resolve_correlation_id"]
