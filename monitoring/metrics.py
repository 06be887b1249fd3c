"""
Submission metrics for chainworker.

Exports Prometheus-compatible counters for the inference submission
pipeline. Every collector owns its registry so tests and multiple
instances never collide on the global default registry.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class SubmissionMetrics:
    """Collect and export submission pipeline metrics"""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.submission_success = Counter(
            "chainworker_submission_success_total",
            "Worker payloads accepted by the chain",
            ["topic_id"],
            registry=self.registry,
        )

        self.submission_failure = Counter(
            "chainworker_submission_failure_total",
            "Inference jobs that failed",
            ["topic_id", "reason"],
            registry=self.registry,
        )

        self.submission_skipped = Counter(
            "chainworker_submission_skipped_total",
            "Inference jobs skipped by the submission gate",
            ["topic_id", "reason"],
            registry=self.registry,
        )

        self.node_switch = Counter(
            "chainworker_node_switch_total",
            "RPC node failovers",
            registry=self.registry,
        )

        self.job_duration = Histogram(
            "chainworker_job_duration_seconds",
            "Inference job duration in seconds",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=self.registry,
        )

    def record_success(self, topic_id: int) -> None:
        self.submission_success.labels(topic_id=str(topic_id)).inc()

    def record_failure(self, topic_id: int, reason: str) -> None:
        self.submission_failure.labels(topic_id=str(topic_id), reason=reason).inc()

    def record_skip(self, topic_id: int, reason: str) -> None:
        self.submission_skipped.labels(topic_id=str(topic_id), reason=reason).inc()

    def record_node_switch(self) -> None:
        self.node_switch.inc()

    def observe_job_duration(self, seconds: float) -> None:
        self.job_duration.observe(seconds)

    def get_value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a sample, 0.0 when it has not been recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def export(self) -> bytes:
        """Export metrics in Prometheus format"""
        return generate_latest(self.registry)


__all__ = ["SubmissionMetrics"]
