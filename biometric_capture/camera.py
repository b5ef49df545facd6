"""
Frame source.

Wraps OpenCV ``VideoCapture`` to provide a simple iterator of BGR frames from
either a camera device (by index) or a recorded video file, which is handy for
replaying a measurement without hardware.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Generator, Optional, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Consecutive failed reads after which a source is considered lost.
MAX_NULL_STREAK = 10


class FrameSource:
    """
    Thin wrapper around ``cv2.VideoCapture``.

    Parameters
    ----------
    resolution:
        (width, height) requested from a camera device.  Ignored for files.
    fps:
        Requested frame rate.  Actual rate may differ slightly.  Video files
        are replayed at this rate when *realtime* is set.
    camera_index:
        OpenCV camera index, used when *video_path* is not given.
    video_path:
        Read frames from this file instead of a camera.
    realtime:
        Pace file playback at *fps* so a recording takes as long as it did
        to capture (default True).  Camera devices are paced by the driver.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (640, 480),
        fps: float = 30,
        camera_index: int = 0,
        video_path: Optional[Union[str, Path]] = None,
        realtime: bool = True,
    ) -> None:
        self.resolution = resolution
        self.fps = fps
        self.camera_index = camera_index
        self.video_path = Path(video_path) if video_path is not None else None
        self.realtime = realtime

        self._cap: Optional[cv2.VideoCapture] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    @property
    def description(self) -> str:
        if self.video_path is not None:
            return f"file:{self.video_path}"
        return f"camera:{self.camera_index}"

    def open(self) -> None:
        """
        Open the device or file.

        Raises
        ------
        RuntimeError
            If the source cannot be opened (missing device, permission
            denied, unreadable file).
        """
        if self.video_path is not None:
            if not self.video_path.exists():
                raise RuntimeError(f"Video file not found: {self.video_path}")
            cap = cv2.VideoCapture(str(self.video_path))
        else:
            cap = cv2.VideoCapture(self.camera_index)

        if not cap.isOpened():
            cap.release()
            raise RuntimeError(f"Cannot open video source {self.description}")

        if self.video_path is None:
            w, h = self.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            cap.set(cv2.CAP_PROP_FPS, self.fps)

        self._cap = cap
        logger.info(
            "Source opened – %s resolution=%s fps=%g",
            self.description, self.resolution, self.fps,
        )

    def close(self) -> None:
        """Release the device or file."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Source closed.")

    # Context-manager support
    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> np.ndarray | None:
        """
        Capture a single frame.

        Returns
        -------
        numpy.ndarray
            BGR image array (H × W × 3, dtype uint8), or *None* on failure.
        """
        if self._cap is None:
            raise RuntimeError("Source is not open.  Call open() first.")

        ok, frame = self._cap.read()
        if not ok:
            logger.debug("VideoCapture.read() returned False.")
            return None
        return frame

    def frames(self) -> Generator[np.ndarray, None, None]:
        """
        Yield frames until the source is closed or a video file ends.

        Usage::

            with FrameSource() as src:
                for frame in src.frames():
                    session.push_frame(frame)

        Raises
        ------
        RuntimeError
            If a camera fails :data:`MAX_NULL_STREAK` reads in a row.
        """
        paced = self.video_path is not None and self.realtime and self.fps > 0
        period = 1.0 / self.fps if paced else 0.0
        due = time.monotonic()
        _null_streak = 0
        while self._cap is not None:
            frame = self.read_frame()
            if frame is None:
                if self.video_path is not None:
                    logger.info("End of video file reached.")
                    break
                _null_streak += 1
                if _null_streak >= MAX_NULL_STREAK:
                    logger.error(
                        "Camera returned %d consecutive empty frames – aborting.",
                        MAX_NULL_STREAK,
                    )
                    raise RuntimeError(
                        f"Camera returned {MAX_NULL_STREAK} consecutive empty frames"
                    )
                continue
            _null_streak = 0
            if paced:
                due += period
                delay = due - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
            yield frame
