"""
E-Sign Metrics.

In-process counters for job outcomes, email delivery, finalization and
imports. ``snapshot()`` returns a point-in-time copy for dashboards and tests.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class MetricsSnapshot:
    job_success_total: dict[str, int] = field(default_factory=dict)
    job_failure_total: dict[str, int] = field(default_factory=dict)
    job_retry_total: dict[str, int] = field(default_factory=dict)
    email_sent_total: int = 0
    email_failed_total: int = 0
    email_retry_total: int = 0
    provider_result_total: dict[str, int] = field(default_factory=dict)
    finalize_success_total: int = 0
    finalize_failure_total: int = 0
    finalize_duration_ms: tuple[float, ...] = ()
    completion_delivery_success_total: int = 0
    completion_delivery_failure_total: int = 0
    google_import_total: dict[str, int] = field(default_factory=dict)
    token_validation_failure_total: int = 0

    def to_dict(self) -> dict:
        return {
            "job_success_total": dict(self.job_success_total),
            "job_failure_total": dict(self.job_failure_total),
            "job_retry_total": dict(self.job_retry_total),
            "email_sent_total": self.email_sent_total,
            "email_failed_total": self.email_failed_total,
            "email_retry_total": self.email_retry_total,
            "provider_result_total": dict(self.provider_result_total),
            "finalize_success_total": self.finalize_success_total,
            "finalize_failure_total": self.finalize_failure_total,
            "finalize_duration_ms": list(self.finalize_duration_ms),
            "completion_delivery_success_total": self.completion_delivery_success_total,
            "completion_delivery_failure_total": self.completion_delivery_failure_total,
            "google_import_total": dict(self.google_import_total),
            "token_validation_failure_total": self.token_validation_failure_total,
        }


class InMemoryMetrics:
    """Thread-safe counter set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._labeled: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
            self._counters: dict[str, int] = defaultdict(int)
            self._finalize_durations: list[float] = []

    def observe_job_result(self, job_name: str, success: bool) -> None:
        name = "job_success_total" if success else "job_failure_total"
        with self._lock:
            self._labeled[name][job_name] += 1

    def observe_job_retry(self, job_name: str) -> None:
        with self._lock:
            self._labeled["job_retry_total"][job_name] += 1

    def observe_email(self, outcome: str) -> None:
        """Count an email outcome: ``sent``, ``failed`` or ``retry``."""
        with self._lock:
            self._counters[f"email_{outcome}_total"] += 1

    def observe_provider_result(self, provider: str, success: bool) -> None:
        outcome = "success" if success else "failure"
        with self._lock:
            self._labeled["provider_result_total"][f"{provider}:{outcome}"] += 1

    def observe_finalize(self, duration_ms: float, success: bool) -> None:
        with self._lock:
            self._counters["finalize_success_total" if success else "finalize_failure_total"] += 1
            self._finalize_durations.append(round(duration_ms, 3))

    def observe_completion_delivery(self, success: bool) -> None:
        name = "completion_delivery_success_total" if success else "completion_delivery_failure_total"
        with self._lock:
            self._counters[name] += 1

    def observe_google_import(self, outcome: str) -> None:
        with self._lock:
            self._labeled["google_import_total"][outcome] += 1

    def observe_token_validation_failure(self) -> None:
        with self._lock:
            self._counters["token_validation_failure_total"] += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            labeled = {name: dict(values) for name, values in self._labeled.items()}
            counters = dict(self._counters)
            return MetricsSnapshot(
                job_success_total=labeled.get("job_success_total", {}),
                job_failure_total=labeled.get("job_failure_total", {}),
                job_retry_total=labeled.get("job_retry_total", {}),
                email_sent_total=counters.get("email_sent_total", 0),
                email_failed_total=counters.get("email_failed_total", 0),
                email_retry_total=counters.get("email_retry_total", 0),
                provider_result_total=labeled.get("provider_result_total", {}),
                finalize_success_total=counters.get("finalize_success_total", 0),
                finalize_failure_total=counters.get("finalize_failure_total", 0),
                finalize_duration_ms=tuple(self._finalize_durations),
                completion_delivery_success_total=counters.get("completion_delivery_success_total", 0),
                completion_delivery_failure_total=counters.get("completion_delivery_failure_total", 0),
                google_import_total=labeled.get("google_import_total", {}),
                token_validation_failure_total=counters.get("token_validation_failure_total", 0),
            )


_metrics: Optional[InMemoryMetrics] = None


def get_metrics() -> InMemoryMetrics:
    """Get the process-wide metrics instance (singleton)."""
    global _metrics
    if _metrics is None:
        _metrics = InMemoryMetrics()
    return _metrics
