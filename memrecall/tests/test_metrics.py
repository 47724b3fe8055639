"""Tests for latency histograms and metric export."""

import json

from memrecall.daemon.metrics import LatencyHistogram, MetricsCollector


class TestLatencyHistogram:
    def test_bucket_assignment(self):
        hist = LatencyHistogram("t")
        hist.record(3)
        hist.record(40)
        assert hist.counts[5] == 1
        assert hist.counts[50] == 1
        assert hist.total_count == 2
        assert hist.get_mean() == 21.5

    def test_latency_over_top_bucket_only_counts_in_total(self):
        hist = LatencyHistogram("t")
        hist.record(6000)
        assert hist.counts[5000] == 0
        assert sum(hist.counts.values()) == 0
        assert hist.total_count == 1
        assert hist.get_percentile(50) == 5000

    def test_percentiles(self):
        hist = LatencyHistogram("t")
        for _ in range(9):
            hist.record(4)
        hist.record(400)
        assert hist.get_percentile(50) == 5
        assert hist.get_percentile(95) == 500


class TestMetricsCollector:
    def test_prometheus_puts_slow_requests_in_inf_bucket(self):
        metrics = MetricsCollector()
        metrics.record_timings({"total": 6000.0})
        lines = metrics.export_metrics("prometheus").splitlines()

        name = "memrecall_search_total_latency_ms"
        assert f'{name}_bucket{{le="5000"}} 0' in lines
        assert f'{name}_bucket{{le="+Inf"}} 1' in lines
        assert f"{name}_count 1" in lines

    def test_json_export(self):
        metrics = MetricsCollector()
        metrics.record_timings({"total": 12.0})
        metrics.increment_counter("search.requests")
        data = json.loads(metrics.export_metrics("json"))
        assert data["latencies"]["search.total"]["count"] == 1
        assert data["counters"] == {"search.requests": 1}
