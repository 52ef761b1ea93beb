"""
Metrics Collection for TTB Onboarding

Collects and exposes metrics for:
- Commit lifecycle (started, completed, failed, failures by stage)
- Commit stage execution times (average, p95)
- Reconciliation runs and how many came out fully reconciled

Metrics are kept in-memory for the lifetime of the process.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class CommitMetrics:
    """Metrics for onboarding commits."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    
    # Failures by the stage that raised
    failed_by_stage: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ReconciliationMetrics:
    """Metrics for reconciliation calculations."""
    runs: int = 0
    fully_reconciled: int = 0


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000
    
    # By stage
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))
    
    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]
        
        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]
    
    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0
    
    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for onboarding commits.
    
    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_commit_started(commit_id)
        metrics.record_stage_time("save_opening_balances", duration_ms=12.5)
    """
    
    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()
    
    def __init__(self):
        self.commits = CommitMetrics()
        self.reconciliations = ReconciliationMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()
    
    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance
    
    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (for tests)."""
        with cls._lock:
            cls._instance = None
    
    # =========================================================================
    # Commit Metrics
    # =========================================================================
    
    def record_commit_started(self, commit_id: str):
        with self._lock:
            self.commits.started += 1
    
    def record_commit_completed(self, commit_id: str, duration_ms: float = None):
        with self._lock:
            self.commits.completed += 1
            if duration_ms is not None:
                self.timings.add_sample(duration_ms, "commit")
    
    def record_commit_failed(self, commit_id: str, stage: str):
        with self._lock:
            self.commits.failed += 1
            self.commits.failed_by_stage[stage] += 1
    
    # =========================================================================
    # Reconciliation Metrics
    # =========================================================================
    
    def record_reconciliation_run(self, fully_reconciled: bool):
        with self._lock:
            self.reconciliations.runs += 1
            if fully_reconciled:
                self.reconciliations.fully_reconciled += 1
    
    # =========================================================================
    # Timing Metrics
    # =========================================================================
    
    def record_stage_time(self, stage: str, duration_ms: float):
        """Record a commit stage timing sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, f"stage.{stage}")
    
    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }
    
    # =========================================================================
    # Summary
    # =========================================================================
    
    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "commits": {
                    "started": self.commits.started,
                    "completed": self.commits.completed,
                    "failed": self.commits.failed,
                    "failed_by_stage": dict(self.commits.failed_by_stage),
                },
                "reconciliations": {
                    "runs": self.reconciliations.runs,
                    "fully_reconciled": self.reconciliations.fully_reconciled,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_commit_started(commit_id: str):
    get_metrics().record_commit_started(commit_id)


def record_commit_completed(commit_id: str, duration_ms: float = None):
    get_metrics().record_commit_completed(commit_id, duration_ms)


def record_commit_failed(commit_id: str, stage: str):
    get_metrics().record_commit_failed(commit_id, stage)


def record_reconciliation_run(fully_reconciled: bool):
    get_metrics().record_reconciliation_run(fully_reconciled)


def record_stage_time(stage: str, duration_ms: float):
    get_metrics().record_stage_time(stage, duration_ms)
