"""Metrics collection and observability."""

import json
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger


SEARCH_STAGES = ["total", "parse", "cache_lookup", "keyword", "semantic", "retrieve",
                 "hydrate", "fuse", "mode_select", "nuggets"]


@dataclass
class LatencyHistogram:
    """Track latency distribution with percentiles."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [
        1, 5, 10, 25, 50, 100, 200, 300, 500, 1000, 2000, 5000  # milliseconds
    ])
    counts: Dict[float, int] = field(default_factory=dict)
    total_count: int = 0
    sum_ms: float = 0

    def __post_init__(self):
        for bucket in self.buckets:
            self.counts[bucket] = 0

    def record(self, latency_ms: float) -> None:
        """Record a latency measurement."""
        self.total_count += 1
        self.sum_ms += latency_ms

        for bucket in self.buckets:
            if latency_ms <= bucket:
                self.counts[bucket] += 1
                break

    def get_percentile(self, percentile: float) -> float:
        """Get approximate percentile value."""
        if self.total_count == 0:
            return 0

        target_count = self.total_count * (percentile / 100)
        cumulative = 0

        for bucket in self.buckets:
            cumulative += self.counts[bucket]
            if cumulative >= target_count:
                return bucket

        return self.buckets[-1]

    def get_mean(self) -> float:
        if self.total_count == 0:
            return 0
        return self.sum_ms / self.total_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.total_count,
            "mean": round(self.get_mean(), 3),
            "p50": self.get_percentile(50),
            "p95": self.get_percentile(95),
            "p99": self.get_percentile(99),
        }


class MetricsCollector:
    """
    Latency histograms per search stage plus counters.
    One instance is owned by each orchestrator.
    """

    def __init__(self):
        self.histograms = {
            f"search.{stage}": LatencyHistogram(f"search.{stage}")
            for stage in SEARCH_STAGES
        }
        self.counters = defaultdict(int)

    def record_latency(self, metric_name: str, latency_ms: float) -> None:
        if metric_name in self.histograms:
            self.histograms[metric_name].record(latency_ms)
        else:
            logger.warning(f"Unknown metric: {metric_name}")

    def record_timings(self, timings: Dict[str, float]) -> None:
        for stage, latency_ms in timings.items():
            self.record_latency(f"search.{stage}", latency_ms)

    def increment_counter(self, counter_name: str, amount: int = 1) -> None:
        self.counters[counter_name] += amount

    def average_latency_ms(self) -> float:
        return self.histograms["search.total"].get_mean()

    def export_metrics(self, format: str = "json") -> str:
        """Export all metrics as JSON or Prometheus text."""
        if format == "json":
            data = {
                "timestamp": datetime.utcnow().isoformat(),
                "latencies": {
                    name: hist.to_dict()
                    for name, hist in self.histograms.items()
                },
                "counters": dict(self.counters),
            }
            return json.dumps(data, indent=2, default=str)

        elif format == "prometheus":
            lines = []
            for name, hist in self.histograms.items():
                metric_name = f"memrecall_{name.replace('.', '_')}_latency_ms"
                lines.append(f"# HELP {metric_name} Stage latency in milliseconds")
                lines.append(f"# TYPE {metric_name} histogram")

                cumulative = 0
                for bucket in hist.buckets:
                    cumulative += hist.counts[bucket]
                    lines.append(f'{metric_name}_bucket{{le="{bucket}"}} {cumulative}')
                lines.append(f'{metric_name}_bucket{{le="+Inf"}} {hist.total_count}')
                lines.append(f"{metric_name}_sum {hist.sum_ms}")
                lines.append(f"{metric_name}_count {hist.total_count}")

            for name, value in self.counters.items():
                metric_name = f"memrecall_{name.replace('.', '_')}_total"
                lines.append(f"# HELP {metric_name} Counter for {name}")
                lines.append(f"# TYPE {metric_name} counter")
                lines.append(f"{metric_name} {value}")

            return "\n".join(lines)

        else:
            raise ValueError(f"Unknown format: {format}")


class StageTimer:
    """Context manager that writes a stage's wall-clock duration into ``timings``."""

    def __init__(self, timings: Dict[str, float], stage: str):
        self.timings = timings
        self.stage = stage
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.timings[self.stage] = (time.perf_counter() - self.start_time) * 1000
        return False
