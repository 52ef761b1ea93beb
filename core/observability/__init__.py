"""
Observability Module for TTB Onboarding

Provides:
- Structured logging with correlation IDs
- Metrics collection (commits, stage timings, reconciliation runs)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_commit_started,
    record_commit_completed,
    record_commit_failed,
    record_reconciliation_run,
    record_stage_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_commit_started",
    "record_commit_completed",
    "record_commit_failed",
    "record_reconciliation_run",
    "record_stage_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
