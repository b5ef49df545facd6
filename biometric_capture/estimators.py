"""
Heart-rate and HRV estimation from peak spacing.

Algorithm
---------
1. Find the peaks of the sample buffer (see :mod:`peak_detector`).
2. Heart rate: the mean peak-to-peak interval gives the beat period;
   ``bpm = sample_rate * 60 / mean_interval``.  Confidence is
   ``1 - variance / mean_interval²`` clamped to 0 – 1, so perfectly regular
   spacing scores 1.
3. HRV: the intervals converted to milliseconds are RR intervals; the result
   is their RMSSD (root mean square of successive differences).

Insufficient data and implausible rates are not errors; they produce a
zero-valued result.

References
----------
- Task Force of the ESC/NASPE, "Heart rate variability: standards of
  measurement, physiological interpretation and clinical use." 1996.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Tuple

import numpy as np

from biometric_capture.config import HR_MAX_BPM, HR_MIN_BPM, MIN_SAMPLES, SAMPLE_RATE_HZ
from biometric_capture.peak_detector import SignalLike, detect_peaks

logger = logging.getLogger(__name__)


class HeartRateEstimate(NamedTuple):
    heart_rate_bpm: int
    confidence: float


NO_ESTIMATE = HeartRateEstimate(0, 0.0)


def peak_intervals(peaks: np.ndarray) -> np.ndarray:
    """Spacing between consecutive peaks, in samples."""
    return np.diff(np.asarray(peaks, dtype=np.float64))


def rr_intervals_ms(peaks: np.ndarray, sample_rate_hz: float = SAMPLE_RATE_HZ) -> np.ndarray:
    """Convert peak indices to RR intervals in milliseconds."""
    return peak_intervals(peaks) * (1000.0 / sample_rate_hz)


def estimate_heart_rate(
    samples: SignalLike,
    sample_rate_hz: float = SAMPLE_RATE_HZ,
    min_samples: int = MIN_SAMPLES,
    bpm_range: Tuple[int, int] = (HR_MIN_BPM, HR_MAX_BPM),
) -> HeartRateEstimate:
    """
    Return ``(heart_rate_bpm, confidence)`` for *samples*.

    Parameters
    ----------
    samples:
        Intensity samples in arrival order.
    sample_rate_hz:
        Rate the samples were taken at.
    min_samples:
        Buffers shorter than this return ``(0, 0.0)`` without looking at
        the data.
    bpm_range:
        Inclusive plausible range.  Rates outside it are treated as a
        measurement error and return ``(0, 0.0)``.
    """
    if len(samples) < min_samples:
        return NO_ESTIMATE

    peaks = detect_peaks(samples)
    if len(peaks) < 2:
        return NO_ESTIMATE

    intervals = peak_intervals(peaks)
    avg_interval = float(intervals.mean())
    if avg_interval <= 0:
        return NO_ESTIMATE

    bpm = int(round(sample_rate_hz * 60.0 / avg_interval))

    variance = float(np.mean((intervals - avg_interval) ** 2))
    confidence = min(1.0, max(0.0, 1.0 - variance / (avg_interval * avg_interval)))

    low, high = bpm_range
    if bpm < low or bpm > high:
        logger.debug("Rejecting out-of-band estimate: %d BPM", bpm)
        return NO_ESTIMATE

    return HeartRateEstimate(bpm, confidence)


def estimate_hrv(
    samples: SignalLike,
    sample_rate_hz: float = SAMPLE_RATE_HZ,
    min_samples: int = MIN_SAMPLES,
) -> float:
    """
    Return the RMSSD of the detected RR intervals in milliseconds.

    Needs at least *min_samples* samples and three peaks (two RR intervals);
    returns 0.0 otherwise.
    """
    if len(samples) < min_samples:
        return 0.0

    peaks = detect_peaks(samples)
    if len(peaks) < 3:
        return 0.0

    rr_ms = rr_intervals_ms(peaks, sample_rate_hz)
    diffs = np.diff(rr_ms)
    if diffs.size < 1:
        return 0.0
    return float(np.sqrt(np.mean(diffs ** 2)))
