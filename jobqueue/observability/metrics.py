"""
Prometheus metrics collection.
"""

from prometheus_client import (
    Counter,
    Histogram,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

from jobqueue.constants import (
    METRIC_BATCH_SIZE,
    METRIC_BATCHES_DISPATCHED,
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_CREATED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job creation
    - Job outcomes (succeeded, retrying, failed) and execution duration
    - Batch dispatch
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_created = Counter(
            METRIC_JOBS_CREATED,
            "Total number of jobs created",
            ["job_name", "priority"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job attempts finished, by outcome",
            ["job_name", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_name", "status"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.batches_dispatched = Counter(
            METRIC_BATCHES_DISPATCHED,
            "Total number of batches dispatched by the scheduler loop",
            ["job_name"],
            registry=self._registry,
        )

        self.batch_size = Histogram(
            METRIC_BATCH_SIZE,
            "Number of jobs per dispatched batch",
            ["job_name"],
            buckets=(1, 2, 4, 8, 16, 32, 64),
            registry=self._registry,
        )

    def record_job_created(self, job_name: str, priority: int) -> None:
        """Record a job creation."""
        self.jobs_created.labels(job_name=job_name, priority=str(priority)).inc()

    def record_job_completed(
        self,
        job_name: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of one job attempt."""
        self.jobs_completed.labels(job_name=job_name, status=status).inc()
        self.job_duration.labels(job_name=job_name, status=status).observe(
            duration_seconds
        )

    def record_batch(self, job_name: str, size: int) -> None:
        """Record a dispatched batch."""
        self.batches_dispatched.labels(job_name=job_name).inc()
        self.batch_size.labels(job_name=job_name).observe(size)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
