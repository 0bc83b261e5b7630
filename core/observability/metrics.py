"""
Metrics Collection for the sales document engine

Collects in-process counters for:
- Document generation (generated, failed)
- ERP sends (sent, failed, timed out) and send latency (average, p95)
- Batch runs (items processed, items failed)

Counters live in memory only; the document table stays the source of truth
for per-status counts.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional


@dataclass
class DocumentMetrics:
    """Counters for generate/send outcomes."""
    generated: int = 0
    generation_failed: int = 0
    sent: int = 0
    send_failed: int = 0
    send_timeouts: int = 0
    cancelled: int = 0
    deleted: int = 0

    # send outcomes by ERP connector type
    by_connector: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"sent": 0, "failed": 0})
    )


@dataclass
class BatchMetrics:
    """Counters for batch runs."""
    runs: int = 0
    items: int = 0
    item_failures: int = 0
    by_kind: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class TimingMetrics:
    """Latency samples, last N kept per stage."""
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))
    max_samples: int = 1000

    def add_sample(self, stage: str, duration_ms: float):
        samples = self.by_stage[stage]
        samples.append(duration_ms)
        if len(samples) > self.max_samples:
            del samples[: len(samples) - self.max_samples]

    def get_average(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        if not samples:
            return 0.0
        ordered = sorted(samples)
        idx = int(len(ordered) * 0.95)
        return ordered[min(idx, len(ordered) - 1)]


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_document_sent("ecount", duration_ms=420)
    """

    _instance: Optional["MetricsCollector"] = None
    _instance_lock = Lock()

    def __init__(self):
        self.documents = DocumentMetrics()
        self.batches = BatchMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Documents
    # =========================================================================

    def record_document_generated(self, duration_ms: float = None):
        with self._lock:
            self.documents.generated += 1
            if duration_ms is not None:
                self.timings.add_sample("generate", duration_ms)

    def record_generation_failed(self):
        with self._lock:
            self.documents.generation_failed += 1

    def record_document_sent(self, connector_type: str, duration_ms: float = None):
        with self._lock:
            self.documents.sent += 1
            self.documents.by_connector[connector_type]["sent"] += 1
            if duration_ms is not None:
                self.timings.add_sample("send", duration_ms)

    def record_send_failed(self, connector_type: str, timed_out: bool = False):
        with self._lock:
            self.documents.send_failed += 1
            self.documents.by_connector[connector_type]["failed"] += 1
            if timed_out:
                self.documents.send_timeouts += 1

    def record_document_cancelled(self):
        with self._lock:
            self.documents.cancelled += 1

    def record_document_deleted(self):
        with self._lock:
            self.documents.deleted += 1

    # =========================================================================
    # Batches
    # =========================================================================

    def record_batch(self, kind: str, total: int, failed: int):
        """Record a finished batch of the given kind (generate, send, auto)."""
        with self._lock:
            self.batches.runs += 1
            self.batches.items += total
            self.batches.item_failures += failed
            self.batches.by_kind[kind] += 1

    # =========================================================================
    # Summary
    # =========================================================================

    def get_timing_stats(self, stage: str) -> Dict[str, float]:
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, [])),
            }

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "documents": {
                    "generated": self.documents.generated,
                    "generation_failed": self.documents.generation_failed,
                    "sent": self.documents.sent,
                    "send_failed": self.documents.send_failed,
                    "send_timeouts": self.documents.send_timeouts,
                    "cancelled": self.documents.cancelled,
                    "deleted": self.documents.deleted,
                    "by_connector": {k: dict(v) for k, v in self.documents.by_connector.items()},
                },
                "batches": {
                    "runs": self.batches.runs,
                    "items": self.batches.items,
                    "item_failures": self.batches.item_failures,
                    "by_kind": dict(self.batches.by_kind),
                },
                "timings": {
                    stage: {
                        "average_ms": self.timings.get_average(stage),
                        "p95_ms": self.timings.get_p95(stage),
                    }
                    for stage in self.timings.by_stage.keys()
                },
            }

    def reset(self):
        """Clear all counters."""
        with self._lock:
            self.documents = DocumentMetrics()
            self.batches = BatchMetrics()
            self.timings = TimingMetrics()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()
