"""
Local-maximum peak detector.

A sample counts as a beat when it is strictly higher than both neighbours and
higher than the mean of the whole buffer.  No smoothing is applied, so noisy
input can produce spurious peaks; the estimators' confidence score is what
flags such signals.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np

SignalLike = Union[Sequence[float], np.ndarray]


def detect_peaks(samples: SignalLike) -> np.ndarray:
    """
    Return the ascending indices of the peaks in *samples*.

    Index ``i`` (``1 <= i < n - 1``) is included when
    ``s[i] > s[i-1]``, ``s[i] > s[i+1]`` and ``s[i] > mean(s)``.
    Buffers shorter than 3 samples have no peaks.
    """
    signal = np.asarray(samples, dtype=np.float64)
    if signal.size < 3:
        return np.empty(0, dtype=np.intp)

    threshold = signal.mean()
    mid = signal[1:-1]
    mask = (mid > signal[:-2]) & (mid > signal[2:]) & (mid > threshold)
    return np.flatnonzero(mask) + 1
