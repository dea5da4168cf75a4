"""Frame tracking: sliding feature-vector window with derivative signals.

Feeds raw samples through a codifier into a fixed-capacity buffer. Every
accepted sample produces a frame notification carrying a snapshot of the
window, the derivative (change since the previous sample) and the distance
vector (displacement from the oldest sample in the window).

Usage:
    tracker = Tracker(window_length=30)
    tracker.add_observer(my_observer)
    # In the sensor loop:
    tracker.on_skeleton_sample(hand, shoulder)
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

import numpy as np

from jestures.codifier import FeatureCodifier, as_point, is_finite
from jestures.listeners import FrameObserver, ListenerRegistry

logger = logging.getLogger("jestures.tracker")


class Tracker:
    """Owns the live frame buffer and notifies observers of its changes.

    The buffer never holds more than ``window_length`` feature vectors; once
    full, each new sample evicts the oldest. ``frame_index`` counts accepted
    samples modulo ``window_length``, starting at 0.
    """

    def __init__(self, window_length: int = 30, codifier: Optional[FeatureCodifier] = None):
        if window_length <= 0:
            raise ValueError("window_length must be positive")
        self._window_length = window_length
        self.codifier = codifier or FeatureCodifier()
        self._buffer: deque[np.ndarray] = deque(maxlen=window_length)
        self._observers: ListenerRegistry[FrameObserver] = ListenerRegistry("tracker")
        self._frame_index = -1
        self._last: Optional[np.ndarray] = None
        self._accepted = 0
        self._rejected = 0

    # --- Observers ---

    def add_observer(self, observer: FrameObserver):
        self._observers.add(observer)

    def remove_observer(self, observer: FrameObserver) -> bool:
        return self._observers.remove(observer)

    # --- Ingestion ---

    def on_skeleton_sample(self, primary_joint, secondary_joint) -> bool:
        """Codify a joint pair and feed the result. Returns False if rejected."""
        return self.on_sample(self.codifier.codify_skeleton(primary_joint, secondary_joint))

    def on_acceleration_sample(self, acceleration) -> bool:
        """Codify an acceleration vector and feed the result. Returns False if rejected."""
        return self.on_sample(self.codifier.codify_acceleration(acceleration))

    def on_sample(self, feature) -> bool:
        """Append a 2D feature vector to the window.

        Non-finite vectors are dropped: the buffer and frame index are left
        untouched and observers get ``on_sample_rejected`` instead.
        """
        point = as_point(feature)
        if not is_finite(point):
            self._rejected += 1
            logger.debug("Rejected non-finite sample %s", point)
            self._observers.dispatch("on_sample_rejected", point)
            return False

        point = point.copy()
        point.setflags(write=False)

        derivative = point - self._last if self._last is not None else np.zeros(2)
        self._last = point
        self._buffer.append(point)
        distance_vector = point - self._buffer[0]

        self._accepted += 1
        self._frame_index = (self._frame_index + 1) % self._window_length

        window = self.snapshot()
        self._observers.dispatch(
            "on_frame_change", self._frame_index, window, derivative, distance_vector
        )
        if self._frame_index == self._window_length - 1:
            self._observers.dispatch("on_window_complete", window)
        return True

    # --- State ---

    def snapshot(self) -> np.ndarray:
        """Copy of the buffer as a read-only (len, 2) array, oldest first."""
        if not self._buffer:
            window = np.zeros((0, 2), dtype=np.float64)
        else:
            window = np.stack(self._buffer)
        window.setflags(write=False)
        return window

    def reset(self):
        """Clear the buffer and start counting frames from scratch."""
        self._buffer.clear()
        self._frame_index = -1
        self._last = None
        self.codifier.reset()

    def resize(self, window_length: int):
        """Change the window length. Clears the buffer."""
        if window_length <= 0:
            raise ValueError("window_length must be positive")
        if window_length != self._window_length:
            logger.debug("Resizing window %d -> %d", self._window_length, window_length)
        self._window_length = window_length
        self._buffer = deque(maxlen=window_length)
        self.reset()

    @property
    def window_length(self) -> int:
        return self._window_length

    @property
    def frame_index(self) -> int:
        """Index of the most recent accepted frame, or -1 before the first one."""
        return self._frame_index

    @property
    def is_full(self) -> bool:
        return len(self._buffer) == self._window_length

    @property
    def size(self) -> int:
        return len(self._buffer)

    @property
    def accepted_samples(self) -> int:
        return self._accepted

    @property
    def rejected_samples(self) -> int:
        return self._rejected
