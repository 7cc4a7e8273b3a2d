"""Prometheus metrics definitions and helpers.

Provides metric definitions for the submission pipeline and its Google
integrations.
"""

from functools import lru_cache
from typing import Callable

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    REGISTRY,
    CollectorRegistry,
)


class SubmissionMetrics:
    """Submission pipeline metrics."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize submission metrics.

        Args:
            registry: Prometheus registry to use
        """
        # Submissions received per intake endpoint
        self.submissions_received = Counter(
            "formsync_submissions_received_total",
            "Total number of form submissions received",
            ["intake"],
            registry=registry,
        )

        # Submissions that reached the database
        self.submissions_persisted = Counter(
            "formsync_submissions_persisted_total",
            "Total number of form submissions persisted",
            ["intake", "status"],
            registry=registry,
        )

        # Fan-out outcomes per integration
        self.fanout_attempts = Counter(
            "formsync_fanout_attempts_total",
            "Fan-out attempts per integration and outcome",
            ["integration", "outcome"],
            registry=registry,
        )

        self.fanout_duration = Histogram(
            "formsync_fanout_duration_seconds",
            "Time spent on a single fan-out branch",
            ["integration"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )

        # OAuth token refreshes
        self.token_refreshes = Counter(
            "formsync_google_token_refreshes_total",
            "Google OAuth token refresh attempts",
            ["owner", "outcome"],
            registry=registry,
        )

        # Sheet write retries
        self.sheet_write_retries = Counter(
            "formsync_sheet_write_retries_total",
            "Retried Google Sheets writes",
            ["error_category"],
            registry=registry,
        )


@lru_cache()
def get_submission_metrics() -> SubmissionMetrics:
    """Return the process-wide metric instance registered on the default registry."""
    return SubmissionMetrics()


def get_metrics_handler(registry: CollectorRegistry = REGISTRY) -> Callable[[], bytes]:
    """Get metrics handler for HTTP endpoint.

    Returns:
        Function that generates Prometheus metrics output
    """

    def metrics_handler() -> bytes:
        return generate_latest(registry)

    return metrics_handler
