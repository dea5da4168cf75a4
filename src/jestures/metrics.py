"""Prometheus-style counters for the recognition engine.

Renders the Prometheus text exposition format directly; callers decide
where to serve or log it.

Tracked metrics:
- jestures_samples_total (counter)
- jestures_rejected_samples_total (counter)
- jestures_recognition_passes_total (counter)
- jestures_skipped_passes_total (counter, windows suppressed by cooldown)
- jestures_gestures_total (counter, by gesture name)
- jestures_pass_latency_seconds (histogram)
"""

from __future__ import annotations

import threading
from collections import Counter


class _Histogram:
    """Cumulative histogram with fixed buckets."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            for i, b in enumerate(self.buckets):
                if value <= b:
                    self.bucket_counts[i] += 1
                    break

    def render(self, name: str, help_text: str) -> str:
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} histogram",
        ]
        with self._lock:
            cumulative = 0
            for i, b in enumerate(self.buckets):
                cumulative += self.bucket_counts[i]
                lines.append(f'{name}_bucket{{le="{b}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return "\n".join(lines)


class MetricsCollector:
    """Counts samples, passes and recognitions."""

    def __init__(self):
        self._gesture_counts: Counter = Counter()
        self._samples_total = 0
        self._rejected_total = 0
        self._passes_total = 0
        self._skipped_total = 0
        self._lock = threading.Lock()

        # 1ms .. 100ms; a pass should fit inside one frame
        self._latency = _Histogram(
            [0.001, 0.002, 0.005, 0.010, 0.020, 0.033, 0.050, 0.100]
        )

    def record_sample(self, accepted: bool = True):
        with self._lock:
            self._samples_total += 1
            if not accepted:
                self._rejected_total += 1

    def record_pass(self, latency_seconds: float):
        with self._lock:
            self._passes_total += 1
        self._latency.observe(latency_seconds)

    def record_skipped(self):
        with self._lock:
            self._skipped_total += 1

    def record_gesture(self, name: str):
        with self._lock:
            self._gesture_counts[name] += 1

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines: list[str] = []

        with self._lock:
            scalars = [
                ("jestures_samples_total", "Samples received", self._samples_total),
                ("jestures_rejected_samples_total", "Non-finite samples dropped", self._rejected_total),
                ("jestures_recognition_passes_total", "Recognition passes run", self._passes_total),
                ("jestures_skipped_passes_total", "Ready windows skipped during cooldown", self._skipped_total),
            ]
            gestures = sorted(self._gesture_counts.items())

        for name, help_text, value in scalars:
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name} {value}")
            lines.append("")

        lines.append("# HELP jestures_gestures_total Recognized gestures by name")
        lines.append("# TYPE jestures_gestures_total counter")
        for name, count in gestures:
            lines.append(f'jestures_gestures_total{{gesture="{name}"}} {count}')
        lines.append("")

        lines.append(self._latency.render(
            "jestures_pass_latency_seconds",
            "Recognition pass latency in seconds",
        ))
        lines.append("")

        return "\n".join(lines) + "\n"

    @property
    def gesture_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._gesture_counts)

    @property
    def passes_total(self) -> int:
        with self._lock:
            return self._passes_total

    @property
    def skipped_total(self) -> int:
        with self._lock:
            return self._skipped_total
