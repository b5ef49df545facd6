"""
Measurement session controller.

A session collects one intensity sample per frame for a fixed duration and
then turns the whole buffer into a single :class:`Reading`.

State machine
-------------
::

    IDLE ──start()──▶ CAPTURING ──tick() at 100 % / finalize()──▶ COMPLETE
                          │
                          └──stop()──▶ STOPPED

``start()`` is accepted again from COMPLETE or STOPPED and begins a fresh
session, so one controller can be reused for any number of measurements.

Two independent callers drive a capturing session: the frame path
(:meth:`MeasurementSession.push_frame` / :meth:`~MeasurementSession.push_sample`)
which appends samples and publishes a live preview, and the periodic
:meth:`~MeasurementSession.tick` which advances progress and completes the
session.  Both must be called from the same thread (see :mod:`runner`).

No method raises for bad input or an unexpected state; invalid transitions are
logged and ignored, and a session without usable signal still completes with a
zero-valued ``POOR`` reading.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from biometric_capture.config import MeasurementConfig
from biometric_capture.estimators import estimate_heart_rate, estimate_hrv
from biometric_capture.extractor import FrameIntensityExtractor, Roi
from biometric_capture.filters import bandpass
from biometric_capture.quality import Quality, classify_quality

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE      = "idle"
    CAPTURING = "capturing"
    COMPLETE  = "complete"
    STOPPED   = "stopped"      # cancelled by the user, no reading


class Sample(NamedTuple):
    index: int
    value: float


@dataclass(frozen=True)
class Reading:
    """Final result of a completed session."""

    heart_rate_bpm:   int             # 0 when no valid rate was found
    hrv_ms:           float           # RMSSD; 0.0 when undeterminable
    confidence:       float           # 0 – 1
    quality:          Quality
    duration_seconds: float
    produced_at:      datetime
    sample_count:     int = 0

    @property
    def is_valid(self) -> bool:
        return self.heart_rate_bpm > 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation for export / persistence."""
        return {
            "heart_rate_bpm":   self.heart_rate_bpm,
            "hrv_ms":           round(self.hrv_ms, 2),
            "confidence":       round(self.confidence, 4),
            "quality":          self.quality.value,
            "duration_seconds": round(self.duration_seconds, 2),
            "produced_at":      self.produced_at.isoformat(),
            "sample_count":     self.sample_count,
        }


@dataclass(frozen=True)
class LivePreview:
    """Per-sample update published while capturing."""

    heart_rate_bpm: Optional[int]       # last non-zero rate of this session
    quality:        Optional[Quality]
    progress:       float               # 0 – 100
    sample_count:   int


ReadingCallback = Callable[[Reading], None]
PreviewCallback = Callable[[LivePreview], None]
ErrorCallback = Callable[[str], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeasurementSession:
    """
    One heart-rate / HRV measurement.

    Parameters
    ----------
    config:
        Duration, sample rate and estimator limits.  Defaults to the standard
        30 s / 30 Hz measurement.
    extractor:
        Frame-to-sample reducer used by :meth:`push_frame`.
    on_reading:
        Called exactly once per session with the final :class:`Reading`.
    on_preview:
        Called after every accepted sample with a :class:`LivePreview`.
    on_error:
        Called with a message when the frame source reports a failure.
    clock:
        Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        config: Optional[MeasurementConfig] = None,
        extractor: Optional[FrameIntensityExtractor] = None,
        on_reading: Optional[ReadingCallback] = None,
        on_preview: Optional[PreviewCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config if config is not None else MeasurementConfig()
        self.extractor = extractor if extractor is not None else FrameIntensityExtractor()
        self.on_reading = on_reading
        self.on_preview = on_preview
        self.on_error = on_error
        self._clock = clock

        self._state = SessionState.IDLE
        self._samples: List[Sample] = []
        self._values: List[float] = []
        self._started_at: Optional[float] = None
        self._ended_at: Optional[float] = None
        self._progress: float = 0.0
        self._live_bpm: Optional[int] = None
        self._live_quality: Optional[Quality] = None
        self._reading: Optional[Reading] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Begin a new measurement with an empty buffer.

        Returns *False* (and changes nothing) if a measurement is already
        capturing.
        """
        if self._state is SessionState.CAPTURING:
            logger.warning("start() ignored – a measurement is already running.")
            return False

        self._clear()
        self._started_at = self._clock()
        self._state = SessionState.CAPTURING
        logger.info(
            "Measurement started – duration=%.1fs rate=%.1fHz bandpass=%s",
            self.config.duration_seconds,
            self.config.sample_rate_hz,
            self.config.bandpass,
        )
        return True

    def stop(self) -> bool:
        """Cancel a running measurement.  No reading is emitted."""
        if self._state is not SessionState.CAPTURING:
            logger.debug("stop() ignored in state %s", self._state.value)
            return False
        self._state = SessionState.STOPPED
        self._ended_at = self._clock()
        logger.info(
            "Measurement stopped at %.0f%% with %d samples.",
            self._progress, len(self._samples),
        )
        return True

    def finalize(self) -> Optional[Reading]:
        """Complete a running measurement now, before the target duration."""
        if self._state is not SessionState.CAPTURING:
            logger.warning("finalize() ignored in state %s", self._state.value)
            return None
        duration = min(self.elapsed_seconds, self.config.duration_seconds)
        return self._complete(duration)

    def reset(self) -> None:
        """Discard the current buffer and result and return to IDLE."""
        self._clear()
        self._state = SessionState.IDLE

    # ------------------------------------------------------------------
    # Frame path
    # ------------------------------------------------------------------

    def push_frame(self, frame: Optional[np.ndarray], roi: Optional[Roi] = None) -> Optional[LivePreview]:
        """
        Extract a sample from *frame* and append it.

        Frames are ignored outside CAPTURING and when the extractor yields no
        value.
        """
        if self._state is not SessionState.CAPTURING:
            return None
        value = self.extractor.extract(frame, roi)
        if value is None:
            return None
        return self.push_sample(value)

    def push_sample(self, value: float) -> Optional[LivePreview]:
        """
        Append one intensity sample and publish a live preview.

        Non-numeric and non-finite values are dropped.
        """
        if self._state is not SessionState.CAPTURING:
            return None
        try:
            value = float(value)
        except (TypeError, ValueError):
            logger.debug("Dropping non-numeric sample %r", value)
            return None
        if not math.isfinite(value):
            logger.debug("Dropping non-finite sample %r", value)
            return None

        self._samples.append(Sample(len(self._samples), value))
        self._values.append(value)

        estimate = estimate_heart_rate(
            self._signal(),
            self.config.sample_rate_hz,
            self.config.min_samples,
            self.config.bpm_range,
        )
        if estimate.heart_rate_bpm > 0:
            self._live_bpm = estimate.heart_rate_bpm
        self._live_quality = classify_quality(estimate.confidence)

        preview = self.preview
        self._notify(self.on_preview, preview)
        return preview

    # ------------------------------------------------------------------
    # Tick path
    # ------------------------------------------------------------------

    def tick(self) -> Optional[Reading]:
        """
        Advance progress; complete the session once it reaches 100 %.

        Returns the :class:`Reading` on the completing tick, *None* otherwise.
        Ticks outside CAPTURING are no-ops.
        """
        if self._state is not SessionState.CAPTURING:
            return None

        duration = self.config.duration_seconds
        if duration > 0:
            self._progress = min(100.0, self.elapsed_seconds / duration * 100.0)
        else:
            self._progress = 100.0

        if self._progress >= 100.0:
            return self._complete(duration)
        return None

    # ------------------------------------------------------------------
    # Error channel
    # ------------------------------------------------------------------

    def report_error(self, message: str) -> None:
        """Forward a frame-source failure to ``on_error``.  State is unchanged."""
        logger.error("Frame source error: %s", message)
        self._notify(self.on_error, message)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_capturing(self) -> bool:
        return self._state is SessionState.CAPTURING

    @property
    def progress(self) -> float:
        """Completion percentage (0 – 100) as of the last tick."""
        return self._progress

    @property
    def samples(self) -> Tuple[Sample, ...]:
        return tuple(self._samples)

    @property
    def sample_values(self) -> np.ndarray:
        return np.asarray(self._values, dtype=np.float64)

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._ended_at if self._ended_at is not None else self._clock()
        return max(0.0, end - self._started_at)

    @property
    def preview(self) -> LivePreview:
        return LivePreview(
            heart_rate_bpm=self._live_bpm,
            quality=self._live_quality,
            progress=self._progress,
            sample_count=len(self._samples),
        )

    @property
    def reading(self) -> Optional[Reading]:
        """The reading emitted by the last completed session, if any."""
        return self._reading

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _clear(self) -> None:
        self._samples = []
        self._values = []
        self._started_at = None
        self._ended_at = None
        self._progress = 0.0
        self._live_bpm = None
        self._live_quality = None
        self._reading = None

    def _signal(self) -> np.ndarray:
        """Current buffer, band-pass filtered when enabled."""
        signal = np.asarray(self._values, dtype=np.float64)
        if self.config.bandpass and signal.size >= self.config.min_samples:
            signal = bandpass(
                signal,
                self.config.sample_rate_hz,
                self.config.bpm_low,
                self.config.bpm_high,
            )
        return signal

    def _complete(self, duration_seconds: float) -> Reading:
        # Leave CAPTURING first: at most one reading per session.
        self._state = SessionState.COMPLETE
        self._ended_at = self._clock()

        signal = self._signal()
        rate, confidence = estimate_heart_rate(
            signal,
            self.config.sample_rate_hz,
            self.config.min_samples,
            self.config.bpm_range,
        )
        hrv_ms = estimate_hrv(signal, self.config.sample_rate_hz, self.config.min_samples)

        reading = Reading(
            heart_rate_bpm=rate,
            hrv_ms=hrv_ms,
            confidence=confidence,
            quality=classify_quality(confidence),
            duration_seconds=duration_seconds,
            produced_at=_utcnow(),
            sample_count=len(self._samples),
        )
        self._reading = reading
        logger.info(
            "Measurement complete – BPM=%d HRV=%.1fms conf=%.2f quality=%s samples=%d",
            reading.heart_rate_bpm,
            reading.hrv_ms,
            reading.confidence,
            reading.quality,
            reading.sample_count,
        )
        self._notify(self.on_reading, reading)
        return reading

    def _notify(self, callback: Optional[Callable[[Any], None]], payload: Any) -> None:
        # Callback failures are logged; they never escape into the driver loop.
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:                                 # noqa: BLE001
            logger.exception("Session callback %r failed", callback)
