"""Metrics module using Prometheus."""

from .prometheus_metrics import (
    SubmissionMetrics,
    get_submission_metrics,
    get_metrics_handler,
)

__all__ = [
    "SubmissionMetrics",
    "get_submission_metrics",
    "get_metrics_handler",
]
