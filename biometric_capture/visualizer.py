"""
Real-time overlay visualiser.

Draws the following elements onto each video frame:
  • The sampling region (where the fingertip should be).
  • Live BPM readout coloured by signal quality.
  • Measurement progress bar and session state.
  • A scrolling strip of the raw intensity samples.
"""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from biometric_capture.config import ROI_FRACTION
from biometric_capture.extractor import Roi, center_roi
from biometric_capture.quality import Quality
from biometric_capture.session import LivePreview, SessionState


# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN  = (0, 220,  80)
_BLUE   = (220, 140, 0)
_RED    = (0,  50, 220)
_YELLOW = (0, 210, 210)
_WHITE  = (255, 255, 255)
_BLACK  = (0, 0, 0)
_CYAN   = (220, 200,  0)
_DARK   = (30, 30, 30)

QUALITY_COLOURS = {
    Quality.EXCELLENT: _GREEN,
    Quality.GOOD:      _BLUE,
    Quality.FAIR:      _YELLOW,
    Quality.POOR:      _RED,
}


class Visualizer:
    """
    Draws measurement UI onto OpenCV frames in-place.

    Parameters
    ----------
    resolution:
        (width, height) of the video frame.
    waveform_height:
        Pixel height of the sample strip at the bottom of the frame.
    roi_fraction:
        Fraction of the shorter frame dimension used for the ROI square.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (640, 480),
        waveform_height: int = 80,
        roi_fraction: float = ROI_FRACTION,
    ) -> None:
        self.w, self.h = resolution
        self.waveform_height = waveform_height
        self.roi_fraction = roi_fraction
        self.roi = center_roi(self.w, self.h, roi_fraction)

    def get_roi(self) -> Roi:
        """Return (x, y, w, h) of the region of interest."""
        return self.roi

    def draw(
        self,
        frame: np.ndarray,
        preview: LivePreview,
        state: SessionState,
        samples: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Annotate *frame* in-place and return it.

        Parameters
        ----------
        frame:
            BGR frame from the source.
        preview:
            Latest live preview from the session.
        state:
            Current session state, shown next to the progress bar.
        samples:
            Optional 1-D array of the session's intensity samples to plot.
        """
        # Frames from a file may not match the requested resolution.
        if frame.shape[1] != self.w or frame.shape[0] != self.h:
            self.h, self.w = frame.shape[:2]
            self.roi = center_roi(self.w, self.h, self.roi_fraction)

        x, y, rw, rh = self.roi
        colour = QUALITY_COLOURS.get(preview.quality, _YELLOW)

        # --- ROI box -----------------------------------------------------------
        cv2.rectangle(frame, (x, y), (x + rw, y + rh), colour, 2)
        cv2.putText(
            frame, "Place finger here" if preview.sample_count == 0 else "Measuring...",
            (x, max(12, y - 8)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, colour, 1, cv2.LINE_AA,
        )

        self._draw_bpm(frame, preview)
        self._draw_progress(frame, preview.progress, state)

        if samples is not None and len(samples) > 1:
            self._draw_waveform(frame, samples)

        return frame

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_bpm(self, frame: np.ndarray, preview: LivePreview) -> None:
        if preview.heart_rate_bpm:
            col = QUALITY_COLOURS.get(preview.quality, _WHITE)
            text = f"{preview.heart_rate_bpm} BPM"
            cv2.putText(
                frame, text,
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, _BLACK, 5, cv2.LINE_AA,
            )
            cv2.putText(
                frame, text,
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, col, 3, cv2.LINE_AA,
            )
            cv2.putText(
                frame, f"quality {preview.quality}",
                (16, 80), cv2.FONT_HERSHEY_SIMPLEX, 0.5, col, 1, cv2.LINE_AA,
            )
        else:
            cv2.putText(
                frame, "-- BPM  detecting...",
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 0.7, _YELLOW, 2, cv2.LINE_AA,
            )

    def _draw_progress(self, frame: np.ndarray, progress: float, state: SessionState) -> None:
        fill = min(max(progress, 0.0), 100.0) / 100.0
        bar_w = int((self.w - 32) * fill)
        y0, y1 = self.h - self.waveform_height - 12, self.h - self.waveform_height - 4
        cv2.rectangle(frame, (16, y0), (self.w - 16, y1), _DARK, -1)
        cv2.rectangle(frame, (16, y0), (16 + bar_w, y1), _CYAN, -1)
        cv2.putText(
            frame, f"{state.value} {progress:.0f}%",
            (16, y0 - 2), cv2.FONT_HERSHEY_SIMPLEX, 0.35, _CYAN, 1, cv2.LINE_AA,
        )

    def _draw_waveform(self, frame: np.ndarray, signal: np.ndarray) -> None:
        """Draw the most recent samples in a dark strip at the bottom of the frame."""
        panel_top = self.h - self.waveform_height
        cv2.rectangle(frame, (0, panel_top), (self.w, self.h), _DARK, -1)

        # Normalise signal to [0, 1]
        sig = signal[-self.w:] if len(signal) >= self.w else signal
        mn, mx = float(sig.min()), float(sig.max())
        rng = mx - mn if mx != mn else 1.0
        norm = (sig - mn) / rng

        margin = 6
        plot_h = self.waveform_height - 2 * margin
        xs = np.linspace(0, self.w - 1, len(norm)).astype(np.int32)
        ys = (panel_top + margin + (1.0 - norm) * plot_h).astype(np.int32)

        pts = np.column_stack([xs, ys])
        cv2.polylines(frame, [pts[:, None, :]], False, _RED, 1, cv2.LINE_AA)

        cv2.putText(
            frame, "red",
            (4, panel_top + 14), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )
