"""
Measurement constants.

These are fixed for a standard measurement: 30 seconds of capture at 30 Hz
(900 samples), at least 2 seconds of signal before any rate is reported, and a
plausible heart-rate band of 40 – 200 BPM.  :class:`MeasurementConfig` bundles
them so callers (tests, the CLI) can override individual values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

MEASUREMENT_DURATION_S: float = 30.0
SAMPLE_RATE_HZ: float = 30.0
MIN_SAMPLES: int = 60                 # ≈ 2 s at 30 Hz
HR_MIN_BPM: int = 40
HR_MAX_BPM: int = 200
ROI_FRACTION: float = 0.3             # of the shorter frame side
TICK_INTERVAL_S: float = 0.1
FRAME_QUEUE_SIZE: int = 10           # frames buffered between source and session
BANDPASS_ORDER: int = 4


@dataclass(frozen=True)
class MeasurementConfig:
    duration_seconds: float = MEASUREMENT_DURATION_S
    sample_rate_hz:   float = SAMPLE_RATE_HZ
    min_samples:      int   = MIN_SAMPLES
    bpm_low:          int   = HR_MIN_BPM
    bpm_high:         int   = HR_MAX_BPM
    bandpass:         bool  = False

    @property
    def bpm_range(self) -> Tuple[int, int]:
        return self.bpm_low, self.bpm_high

    @property
    def target_samples(self) -> int:
        """Number of samples a full-length session collects at the target rate."""
        return int(round(self.duration_seconds * self.sample_rate_hz))
