"""Sample sessions: capture a stream of 2D samples to disk and replay it.

Used to drive the recognizer without a sensor:
- reproducible tests
- replaying a user's session against a different profile or settings
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

SESSION_VERSION = 1


@dataclass
class RecordedSample:
    """A single sample in a session."""
    timestamp: float  # seconds from session start
    point: list[float]  # 2D feature vector


class SampleRecorder:
    """Records feature samples.

    Usage:
        recorder = SampleRecorder()
        recorder.start()
        # In your sensor loop:
        recorder.add_sample(point)
        # When done:
        recorder.save("session.json")
    """

    def __init__(self, clock=time.monotonic):
        self._samples: list[RecordedSample] = []
        self._start_time: Optional[float] = None
        self._recording = False
        self._clock = clock

    def start(self):
        """Begin a new session."""
        self._samples = []
        self._start_time = self._clock()
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of samples captured."""
        self._recording = False
        return len(self._samples)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def duration(self) -> float:
        if not self._samples:
            return 0.0
        return self._samples[-1].timestamp

    def add_sample(self, point, timestamp: Optional[float] = None):
        """Append a sample. ``timestamp`` is seconds from start; defaults to the clock."""
        if not self._recording:
            return
        if timestamp is None:
            timestamp = self._clock() - self._start_time
        coords = np.asarray(point, dtype=np.float64).reshape(-1)[:2]
        self._samples.append(RecordedSample(timestamp=float(timestamp), point=coords.tolist()))

    def save(self, path: str | Path):
        """Save session to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": SESSION_VERSION,
            "sample_count": len(self._samples),
            "duration": self.duration,
            "samples": [asdict(s) for s in self._samples],
        }
        with open(path, "w") as f:
            json.dump(data, f)

    def save_compact(self, path: str | Path) -> Path:
        """Save in compressed numpy format. Returns the written path."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        timestamps = np.array([s.timestamp for s in self._samples], dtype=np.float64)
        points = np.array([s.point for s in self._samples], dtype=np.float64).reshape(-1, 2)
        np.savez_compressed(path, timestamps=timestamps, points=points)
        return path


class SamplePlayer:
    """Replays a recorded session.

    Usage:
        player = SamplePlayer.load("session.json")
        for timestamp, point in player.play():
            recognizer.on_sample(point)
    """

    def __init__(self, samples: list[RecordedSample]):
        self._samples = samples

    @classmethod
    def load(cls, path: str | Path) -> SamplePlayer:
        """Load a session from JSON or ``.npz``."""
        path = Path(path)
        if path.suffix == ".npz":
            return cls._load_compact(path)

        with open(path) as f:
            data = json.load(f)

        samples = [
            RecordedSample(timestamp=s["timestamp"], point=s["point"])
            for s in data["samples"]
        ]
        return cls(samples)

    @classmethod
    def _load_compact(cls, path: Path) -> SamplePlayer:
        data = np.load(path, allow_pickle=False)
        timestamps = data["timestamps"]
        points = data["points"]
        return cls([
            RecordedSample(timestamp=float(t), point=p.tolist())
            for t, p in zip(timestamps, points)
        ])

    @classmethod
    def from_points(cls, points, rate_hz: float = 30.0) -> SamplePlayer:
        """Build a session from bare points sampled at a fixed rate."""
        return cls([
            RecordedSample(timestamp=i / rate_hz, point=list(map(float, p[:2])))
            for i, p in enumerate(points)
        ])

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def duration(self) -> float:
        if not self._samples:
            return 0.0
        return self._samples[-1].timestamp

    def play(self) -> Iterator[tuple[float, np.ndarray]]:
        """Yield (timestamp, point) for every sample, without delays."""
        for sample in self._samples:
            yield sample.timestamp, np.array(sample.point, dtype=np.float64)

    def play_realtime(self, speed: float = 1.0) -> Iterator[tuple[float, np.ndarray]]:
        """Replay at original timing, scaled by ``speed``."""
        if not self._samples:
            return

        start = time.monotonic()
        for timestamp, point in self.play():
            target_time = timestamp / speed
            elapsed = time.monotonic() - start
            if target_time > elapsed:
                time.sleep(target_time - elapsed)
            yield timestamp, point
