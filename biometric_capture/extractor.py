"""
Frame intensity extractor.

A fingertip pressed over the lens turns the frame into a nearly uniform red
field whose brightness follows the blood volume under the skin.  Each frame is
therefore reduced to a single number: the mean red-channel intensity of a
square region in the centre of the frame.  Centring the region means the
measurement only depends on the finger covering the middle of the lens, not on
its exact placement.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from biometric_capture.config import ROI_FRACTION

logger = logging.getLogger(__name__)

Roi = Tuple[int, int, int, int]   # x, y, w, h

# Index of the red channel for each supported pixel layout.
_RED_CHANNEL = {
    "bgr": 2,     # OpenCV
    "rgb": 0,     # RGB / RGBA buffers
}


def center_roi(width: int, height: int, fraction: float = ROI_FRACTION) -> Roi:
    """
    Return ``(x, y, w, h)`` of a square centred in a ``width × height`` frame.

    The side is *fraction* of the shorter frame dimension, at least one pixel
    for any frame with a non-zero area.
    """
    if width <= 0 or height <= 0:
        return 0, 0, 0, 0
    side = max(1, int(min(width, height) * fraction))
    return (width - side) // 2, (height - side) // 2, side, side


class FrameIntensityExtractor:
    """
    Reduce a video frame to its mean red-channel intensity.

    Parameters
    ----------
    roi_fraction:
        Side of the default centred region as a fraction of the shorter frame
        dimension (default 0.3).
    channel_order:
        Pixel layout of incoming frames: ``"bgr"`` (OpenCV, default) or
        ``"rgb"`` (also accepts RGBA buffers).
    """

    def __init__(
        self,
        roi_fraction: float = ROI_FRACTION,
        channel_order: str = "bgr",
    ) -> None:
        if channel_order not in _RED_CHANNEL:
            raise ValueError(
                f"Unsupported channel_order {channel_order!r}; "
                f"expected one of {sorted(_RED_CHANNEL)}"
            )
        self.roi_fraction = roi_fraction
        self.channel_order = channel_order
        self._red = _RED_CHANNEL[channel_order]

    def roi_for(self, frame: np.ndarray) -> Roi:
        """Default region of interest for *frame*."""
        h, w = frame.shape[:2]
        return center_roi(w, h, self.roi_fraction)

    def extract(self, frame: Optional[np.ndarray], roi: Optional[Roi] = None) -> Optional[float]:
        """
        Return the mean red intensity inside *roi*, or *None*.

        Parameters
        ----------
        frame:
            Image array (H × W × C).  *None* means the source had no frame
            ready.
        roi:
            Optional ``(x, y, w, h)`` region.  Defaults to :meth:`roi_for`.

        *None* is returned instead of raising when the frame is missing, is
        not a colour image, or the region has no pixels inside the frame.
        """
        if frame is None:
            return None
        if frame.ndim != 3 or frame.shape[2] <= self._red:
            logger.debug("Skipping frame with unsupported shape %s", frame.shape)
            return None

        h, w = frame.shape[:2]
        if h == 0 or w == 0:
            return None

        x, y, rw, rh = roi if roi is not None else self.roi_for(frame)
        x0, y0 = max(0, x), max(0, y)
        x1, y1 = min(w, x + rw), min(h, y + rh)
        if x1 <= x0 or y1 <= y0:
            return None

        patch = frame[y0:y1, x0:x1, self._red]
        return float(np.mean(patch, dtype=np.float64))
