"""
Unit tests for the metrics collector.
"""

from unittest.mock import Mock

import pytest

from docingest.monitoring.metrics import MetricsCollector, record_safely


class TestMetricsCollector:
    def test_record_api_call(self):
        collector = MetricsCollector()

        collector.record_api_call("embedder", "embed", 0.25, True)

        duration = collector.get_series("api_call_duration")[0]
        assert duration.value == 0.25
        assert duration.unit == "seconds"
        assert duration.tags == {"service": "embedder", "operation": "embed", "success": "true"}
        assert collector.get_series("api_call_count")[0].value == 1

    def test_processing_speed(self):
        collector = MetricsCollector()

        collector.record_processing_speed("embedding", 10, 2.0)
        collector.record_processing_speed("embedding", 4, 0.0)

        assert [p.value for p in collector.get_series("processing_speed")] == [5.0, 4.0]

    def test_summary(self):
        collector = MetricsCollector()
        for value in (1, 2, 3):
            collector.record("latency", value, "ms")

        summary = collector.get_summary()["latency"]

        assert summary == {"count": 3, "sum": 6.0, "min": 1.0, "max": 3.0, "avg": 2.0}

    def test_history_is_bounded(self):
        collector = MetricsCollector(history_size=2)
        for value in range(5):
            collector.record("x", value, "count")

        assert [p.value for p in collector.get_series("x")] == [3.0, 4.0]

    def test_clear(self):
        collector = MetricsCollector()
        collector.record("x", 1, "count")
        collector.clear()

        assert collector.get_summary() == {}


class TestRecordSafely:
    def test_none_sink_is_noop(self):
        record_safely(None, "record", "x", 1, "count")

    def test_sink_failure_is_swallowed(self, caplog):
        sink = Mock()
        sink.record.side_effect = RuntimeError("backend down")

        record_safely(sink, "record", "x", 1, "count")

        sink.record.assert_called_once_with("x", 1, "count")
        assert "backend down" in caplog.text

    def test_forwards_arguments(self):
        sink = Mock()
        record_safely(sink, "record_api_call", "fetcher", "fetch", 0.1, False)
        sink.record_api_call.assert_called_once_with("fetcher", "fetch", 0.1, False)
