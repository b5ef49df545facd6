"""
Optional Butterworth band-pass pre-filter.

Removes slow drift (pressure / exposure changes) and high-frequency sensor
noise before peak detection.  The pass band is the plausible heart-rate band
(default 40 – 200 BPM ≈ 0.67 – 3.33 Hz).  Off by default; the peak detector's
threshold-and-local-maximum rule is the same either way.
"""

from __future__ import annotations

from functools import lru_cache

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from biometric_capture.config import BANDPASS_ORDER, HR_MAX_BPM, HR_MIN_BPM, SAMPLE_RATE_HZ
from biometric_capture.peak_detector import SignalLike


@lru_cache(maxsize=8)
def build_bandpass(
    sample_rate_hz: float = SAMPLE_RATE_HZ,
    bpm_low: float = HR_MIN_BPM,
    bpm_high: float = HR_MAX_BPM,
    order: int = BANDPASS_ORDER,
) -> np.ndarray:
    """Construct a Butterworth bandpass filter (SOS form)."""
    nyq = sample_rate_hz / 2.0
    low = (bpm_low / 60.0) / nyq
    high = (bpm_high / 60.0) / nyq
    # Clamp to valid range
    low = max(1e-4, min(low, 0.999))
    high = max(low + 1e-4, min(high, 0.999))
    return butter(order, [low, high], btype="bandpass", output="sos")


def bandpass(
    samples: SignalLike,
    sample_rate_hz: float = SAMPLE_RATE_HZ,
    bpm_low: float = HR_MIN_BPM,
    bpm_high: float = HR_MAX_BPM,
    order: int = BANDPASS_ORDER,
) -> np.ndarray:
    """
    Return the detrended, band-pass filtered copy of *samples*.

    The output has the same length as the input; an empty input gives an
    empty array.
    """
    signal = np.asarray(samples, dtype=np.float64)
    if signal.size == 0:
        return signal.copy()
    signal = signal - np.mean(signal)
    sos = build_bandpass(float(sample_rate_hz), float(bpm_low), float(bpm_high), int(order))
    # Start in steady state for the first sample so the opening step does not ring.
    zi = sosfilt_zi(sos) * signal[0]
    filtered, _ = sosfilt(sos, signal, zi=zi)
    return filtered
