"""
Metrics collection for the sniper bot
Tracks scan cycle latency, lookup failures and trade outcomes
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple


LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class LatencySummary:
    """Statistical summary of recorded latencies"""
    operation: str
    count: int
    p50: float
    p95: float
    mean: float
    max: float


class MetricsCollector:
    """
    Collects counters, gauges and latency samples in memory

    Usage:
        metrics = MetricsCollector()
        metrics.increment_counter("trades", labels={"side": "buy", "outcome": "success"})
        with LatencyTimer(metrics, "scan_cycle"):
            ...
        metrics.export_metrics()
    """

    def __init__(self, enable_histogram: bool = True, max_samples: int = 10_000):
        self.enable_histogram = enable_histogram
        self.max_samples = max_samples

        self._latencies: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self.max_samples))
        self._counters: Dict[LabelKey, int] = defaultdict(int)
        self._gauges: Dict[LabelKey, float] = {}

    @staticmethod
    def _key(metric_name: str, labels: Optional[Dict[str, str]]) -> LabelKey:
        return (metric_name, tuple(sorted((labels or {}).items())))

    def record_latency(self, operation: str, latency_ms: float) -> None:
        """Record one latency sample and bump the operation's count"""
        if self.enable_histogram:
            self._latencies[operation].append(latency_ms)
        self._counters[self._key(f"{operation}_count", None)] += 1

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._counters[self._key(metric_name, labels)] += value

    def set_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._gauges[self._key(metric_name, labels)] = value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        return self._counters.get(self._key(metric_name, labels), 0)

    def get_gauge(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self._gauges.get(self._key(metric_name, labels), 0.0)

    def get_latency_summary(self, operation: str) -> Optional[LatencySummary]:
        """
        Summarize recorded latencies for an operation

        Returns:
            LatencySummary or None if no samples
        """
        samples = sorted(self._latencies.get(operation, ()))
        if not samples:
            return None

        return LatencySummary(
            operation=operation,
            count=len(samples),
            p50=self._percentile(samples, 50),
            p95=self._percentile(samples, 95),
            mean=statistics.mean(samples),
            max=samples[-1]
        )

    def export_metrics(self) -> Dict:
        """Export all metrics as a JSON-serializable dict"""
        exported: Dict = {"counters": {}, "gauges": {}, "latencies": {}}

        for (name, labels), value in self._counters.items():
            exported["counters"][self._format_key(name, labels)] = value
        for (name, labels), value in self._gauges.items():
            exported["gauges"][self._format_key(name, labels)] = value
        for operation in list(self._latencies.keys()):
            summary = self.get_latency_summary(operation)
            if summary:
                exported["latencies"][operation] = {
                    "count": summary.count,
                    "p50": summary.p50,
                    "p95": summary.p95,
                    "mean": summary.mean,
                    "max": summary.max
                }

        return exported

    def reset(self) -> None:
        self._latencies.clear()
        self._counters.clear()
        self._gauges.clear()

    @staticmethod
    def _format_key(name: str, labels: Tuple[Tuple[str, str], ...]) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in labels)
        return f"{name}{{{rendered}}}"

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        """Linear-interpolated percentile of sorted data"""
        if len(sorted_data) == 1:
            return sorted_data[0]

        index = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(index)
        upper = min(lower + 1, len(sorted_data) - 1)
        weight = index - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager recording elapsed milliseconds into a collector"""

    def __init__(self, metrics: MetricsCollector, operation: str):
        self.metrics = metrics
        self.operation = operation
        self.start_time: Optional[float] = None
        self.latency_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.latency_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.operation, self.latency_ms)
