"""Codification of raw sensor samples into 2D feature vectors.

The sensor side hands over either a pair of skeleton joints or an
acceleration vector. A codifier reduces that to a single 2D point; the
tracker only ever sees the resulting feature vectors.
"""

from __future__ import annotations

from typing import Optional

import numpy as np


def as_point(values, dim: int = 2) -> np.ndarray:
    """Coerce a sequence/array to a float64 vector of length ``dim``."""
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    if arr.shape[0] < dim:
        raise ValueError(f"expected at least {dim} coordinates, got {arr.shape[0]}")
    return arr[:dim]


def is_finite(point: np.ndarray) -> bool:
    return bool(np.all(np.isfinite(point)))


class FeatureCodifier:
    """Turns raw samples into feature vectors.

    The default codification is the primary joint's position relative to the
    secondary joint (e.g. hand relative to shoulder), and the x/y plane of an
    acceleration vector. Subclass to change either rule.
    """

    def __init__(self, scale: float = 1.0):
        self.scale = scale

    def codify_skeleton(self, primary_joint, secondary_joint) -> np.ndarray:
        primary = as_point(primary_joint)
        secondary = as_point(secondary_joint)
        return (primary - secondary) * self.scale

    def codify_acceleration(self, acceleration) -> np.ndarray:
        vec = as_point(acceleration, dim=3)
        return vec[:2] * self.scale

    def reset(self):
        """Forget any state carried between samples."""
        pass


class SmoothingCodifier(FeatureCodifier):
    """Codifier with exponential smoothing over successive samples.

    The output depends on the raw sample plus the previous smoothed value;
    ``alpha=1`` disables smoothing.
    """

    def __init__(self, alpha: float = 0.5, scale: float = 1.0):
        super().__init__(scale=scale)
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = alpha
        self._last: Optional[np.ndarray] = None

    def _smooth(self, point: np.ndarray) -> np.ndarray:
        # Non-finite input passes through so the tracker can reject it
        # without poisoning the running average.
        if not is_finite(point):
            return point
        if self._last is None:
            self._last = point
        else:
            self._last = self.alpha * point + (1.0 - self.alpha) * self._last
        return self._last.copy()

    def codify_skeleton(self, primary_joint, secondary_joint) -> np.ndarray:
        return self._smooth(super().codify_skeleton(primary_joint, secondary_joint))

    def codify_acceleration(self, acceleration) -> np.ndarray:
        return self._smooth(super().codify_acceleration(acceleration))

    def reset(self):
        self._last = None
