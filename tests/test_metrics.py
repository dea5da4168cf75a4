"""Tests for Prometheus metrics."""

from jestures.metrics import MetricsCollector


class TestMetricsCollector:
    def test_record_gesture(self):
        m = MetricsCollector()
        m.record_gesture("wave")
        m.record_gesture("wave")
        m.record_gesture("push")
        assert m.gesture_counts == {"wave": 2, "push": 1}

    def test_passes_and_skips(self):
        m = MetricsCollector()
        m.record_pass(0.002)
        m.record_pass(0.004)
        m.record_skipped()
        assert m.passes_total == 2
        assert m.skipped_total == 1

    def test_render_prometheus_format(self):
        m = MetricsCollector()
        m.record_gesture("wave")
        m.record_sample()
        m.record_sample(accepted=False)

        output = m.render()
        assert "jestures_samples_total 2" in output
        assert "jestures_rejected_samples_total 1" in output
        assert 'jestures_gestures_total{gesture="wave"} 1' in output
        assert "# HELP" in output
        assert "# TYPE" in output

    def test_histogram_is_cumulative(self):
        m = MetricsCollector()
        for _ in range(10):
            m.record_pass(0.0015)
        m.record_pass(0.5)
        output = m.render()
        assert 'jestures_pass_latency_seconds_bucket{le="0.001"} 0' in output
        assert 'jestures_pass_latency_seconds_bucket{le="0.002"} 10' in output
        assert 'jestures_pass_latency_seconds_bucket{le="0.1"} 10' in output
        assert 'jestures_pass_latency_seconds_bucket{le="+Inf"} 11' in output
        assert "jestures_pass_latency_seconds_count 11" in output
