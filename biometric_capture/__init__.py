"""
Biometric Capture — camera-based heart-rate and HRV measurement engine.
Cover the camera with a fingertip; the engine samples the mean red-channel
intensity of each frame, detects pulse peaks and reports BPM, RMSSD-based HRV
and a signal-quality label at the end of a fixed-length session.
"""

from biometric_capture.quality import Quality, classify_quality
from biometric_capture.session import (
    LivePreview,
    MeasurementSession,
    Reading,
    Sample,
    SessionState,
)

__version__ = "0.1.0"
__author__ = "biometric_capture"

__all__ = [
    "LivePreview",
    "MeasurementSession",
    "Quality",
    "Reading",
    "Sample",
    "SessionState",
    "classify_quality",
]
