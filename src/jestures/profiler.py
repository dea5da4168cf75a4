"""Per-pass timing for recognition.

A ``PassTiming`` is filled in while one window is scored: time spent in each
stage (DTW matching, voting, listener dispatch) and how many templates were
matched. The ``RecognitionProfiler`` keeps the most recent passes and reports
pass latency and the average DTW cost of a single template.

Usage:
    timing = PassTiming()
    with timing.stage("matching"):
        for name, template in library.pairs():
            matcher.distance(template, window)
    timing.templates = library.template_count
    profiler.record(timing)
"""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Iterator

import numpy as np


class PassTiming:
    """Stage timings of one recognition pass, in milliseconds."""

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.templates = 0

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - t0) * 1000.0
            self.stages[name] = self.stages.get(name, 0.0) + elapsed_ms

    @property
    def total_ms(self) -> float:
        return sum(self.stages.values())

    @property
    def per_template_ms(self) -> float | None:
        """Matching time divided by templates scored; None if nothing was matched."""
        if not self.templates:
            return None
        return self.stages.get("matching", 0.0) / self.templates


class RecognitionProfiler:
    """Rolling record of recent pass timings."""

    def __init__(self, history: int = 120):
        self._history: deque[PassTiming] = deque(maxlen=history)
        self._passes = 0
        self._lock = threading.Lock()
        self.enabled = True

    def record(self, timing: PassTiming):
        if not self.enabled:
            return
        with self._lock:
            self._history.append(timing)
            self._passes += 1

    @property
    def passes(self) -> int:
        return self._passes

    def summary(self) -> dict:
        """Latency over the recent passes; empty before the first pass."""
        with self._lock:
            recent = list(self._history)
            passes = self._passes
        if not recent:
            return {}

        totals = np.array([t.total_ms for t in recent])
        stage_names = sorted({name for t in recent for name in t.stages})
        stages = {
            name: round(float(np.mean([t.stages.get(name, 0.0) for t in recent])), 3)
            for name in stage_names
        }
        per_template = [t.per_template_ms for t in recent if t.per_template_ms is not None]

        return {
            "passes": passes,
            "avg_ms": round(float(totals.mean()), 3),
            "p95_ms": round(float(np.percentile(totals, 95)), 3),
            "max_ms": round(float(totals.max()), 3),
            "stages": stages,
            "per_template_ms": round(float(np.mean(per_template)), 4) if per_template else None,
        }

    def reset(self):
        with self._lock:
            self._history.clear()
            self._passes = 0
