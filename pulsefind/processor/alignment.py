"""Dynamic time warping over scalar sequences.

Unconstrained DTW (no band, no early termination) with absolute-difference
local cost. Intended for short pre-extracted feature sequences such as
downsampled onset envelopes, never raw sample streams.
"""

from __future__ import annotations

import math

import numpy as np
import numpy.typing as npt


def align(seq1: npt.ArrayLike, seq2: npt.ArrayLike) -> float:
    """Normalized DTW cost between two sequences; lower is more similar.

    The cumulative cost of the optimal warping path is divided by
    ``len(seq1) + len(seq2)``.

    Returns:
        0.0 for two empty sequences, ``inf`` when exactly one is empty
    """
    a = np.asarray(seq1, dtype=np.float64).ravel()
    b = np.asarray(seq2, dtype=np.float64).ravel()
    n, m = len(a), len(b)
    if n == 0 and m == 0:
        return 0.0
    if n == 0 or m == 0:
        return math.inf

    previous = np.full(m + 1, np.inf)
    previous[0] = 0.0
    for i in range(1, n + 1):
        # Costs against the whole of seq2 for this row
        cost = np.abs(a[i - 1] - b)
        # match/insertion parts of the recurrence vectorise across the row
        diagonal_or_up = cost + np.minimum(previous[:-1], previous[1:])

        current = np.empty(m + 1)
        current[0] = np.inf
        left = np.inf
        for j in range(m):
            left = min(diagonal_or_up[j], cost[j] + left)
            current[j + 1] = left
        previous = current

    return float(previous[m] / (n + m))


def alignment_score(seq1: npt.ArrayLike, seq2: npt.ArrayLike) -> float:
    """Map DTW cost to a (0, 1] similarity: ``1 / (1 + cost)``."""
    cost = align(seq1, seq2)
    if math.isinf(cost):
        return 0.0
    return 1.0 / (1.0 + cost)


def z_normalize(sequence: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Zero mean, unit variance. Constant sequences become all zeros."""
    values = np.asarray(sequence, dtype=np.float64).ravel()
    if len(values) == 0:
        return values
    std = values.std()
    if std == 0:
        return np.zeros_like(values)
    return (values - values.mean()) / std


def downsample(sequence: npt.ArrayLike, length: int) -> npt.NDArray[np.float64]:
    """Linearly resample a sequence to at most ``length`` points."""
    values = np.asarray(sequence, dtype=np.float64).ravel()
    if len(values) <= length or length <= 0:
        return values
    positions = np.linspace(0, len(values) - 1, length)
    return np.interp(positions, np.arange(len(values)), values)
