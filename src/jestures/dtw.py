"""Dynamic Time Warping under a Sakoe-Chiba band.

Aligns two sequences of 2D feature vectors and returns the minimal cumulative
Euclidean cost. The band keeps the alignment near the diagonal; its half-width
is given in frames and scaled to the length ratio of the two sequences.

Usage:
    d = dtw_distance(template, window, radius=5)
    matcher = DtwMatcher(radius=5)
    d = matcher.distance(template, window)
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np


def _band_bounds(i: int, n: int, m: int, reach: float) -> tuple[int, int]:
    """Columns j of row i with |i*m - j*n| <= reach, clamped to [1, m].

    Evaluated in integer cross-multiplied form so the band is the exact
    transpose of itself when the two sequences are swapped.
    """
    center = i * m
    lo = max(1, math.ceil((center - reach) / n))
    hi = min(m, math.floor((center + reach) / n))
    # Float division can land one column off either edge
    while lo > 1 and abs(center - (lo - 1) * n) <= reach:
        lo -= 1
    while lo <= hi and abs(center - lo * n) > reach:
        lo += 1
    while hi < m and abs(center - (hi + 1) * n) <= reach:
        hi += 1
    while hi >= lo and abs(center - hi * n) > reach:
        hi -= 1
    return lo, hi


def _diagonal_bounds(i: int, n: int, m: int) -> tuple[int, int]:
    """Columns of row i crossed by the straight line from (0, 0) to (n, m)."""
    lo = max(1, -(-(i - 1) * m // n))
    hi = min(m, (i * m) // n + 1)
    return lo, hi


def dtw_distance(template: np.ndarray, candidate: np.ndarray, radius: float = math.inf) -> float:
    """Compute banded DTW distance between two sequences of points.

    Cell (i, j) is evaluated iff |i/n - j/m| * max(n, m) <= radius, or if the
    diagonal from (0, 0) to (n, m) crosses it. The diagonal guarantees a legal
    path for any radius.

    Args:
        template: Shape (N, D).
        candidate: Shape (M, D).
        radius: Band half-width in frames. ``inf`` for unconstrained DTW.

    Returns:
        Cumulative cost ``cost[N, M]``; ``inf`` if either sequence is empty.
    """
    s = np.asarray(template, dtype=np.float64)
    t = np.asarray(candidate, dtype=np.float64)
    n, m = len(s), len(t)
    if n == 0 or m == 0:
        return float("inf")
    if radius < 0 or math.isnan(radius):
        raise ValueError(f"radius must be non-negative, got {radius}")

    unconstrained = math.isinf(radius) or radius >= max(n, m)
    reach = radius * min(n, m)

    cost = np.full((n + 1, m + 1), np.inf, dtype=np.float64)
    cost[0, 0] = 0.0

    for i in range(1, n + 1):
        if unconstrained:
            j_start, j_end = 1, m
        else:
            j_start, j_end = _diagonal_bounds(i, n, m)
            b_lo, b_hi = _band_bounds(i, n, m, reach)
            if b_lo <= b_hi:
                j_start, j_end = min(j_start, b_lo), max(j_end, b_hi)

        dists = np.linalg.norm(t[j_start - 1:j_end] - s[i - 1], axis=1)
        prev = cost[i - 1]
        row = cost[i]
        for k, j in enumerate(range(j_start, j_end + 1)):
            row[j] = dists[k] + min(prev[j], row[j - 1], prev[j - 1])

    return float(cost[n, m])


class DtwMatcher:
    """DTW scorer bound to a default band radius."""

    def __init__(self, radius: float = math.inf):
        self.radius = radius

    def distance(
        self, template: np.ndarray, candidate: np.ndarray, radius: Optional[float] = None
    ) -> float:
        return dtw_distance(template, candidate, self.radius if radius is None else radius)
