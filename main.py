#!/usr/bin/env python3
"""
Biometric Capture – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --duration FLOAT     Measurement length in seconds (default: 30)
    --fps FLOAT          Sample rate / requested frame rate (default: 30)
    --resolution WxH     Camera resolution (default: 640x480)
    --camera-index INT   OpenCV camera index (default: 0)
    --video PATH         Replay a recorded video instead of a camera
    --headless           Run without display window (log BPM to stdout)
    --bandpass           Band-pass filter the signal before peak detection
    --json               Print the final reading as JSON
    --verbose            Debug logging

Keyboard shortcuts (when a window is open)
------------------------------------------
    q / ESC  – cancel the measurement
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Must be set before cv2 is imported so Qt5 uses X11/XWayland instead of
# looking for a Wayland plugin that is not bundled with pip-installed opencv.
import os
os.environ.setdefault("QT_QPA_PLATFORM", "xcb")

import cv2
import numpy as np

from biometric_capture.camera import FrameSource
from biometric_capture.config import MEASUREMENT_DURATION_S, SAMPLE_RATE_HZ, MeasurementConfig
from biometric_capture.runner import MeasurementRunner
from biometric_capture.session import LivePreview, MeasurementSession, Reading
from biometric_capture.visualizer import Visualizer

logger = logging.getLogger("biometric_capture")

WINDOW_TITLE = "Biometric Capture"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Camera-based heart rate and HRV measurement",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--duration", type=float, default=MEASUREMENT_DURATION_S,
                        help="Measurement length in seconds")
    parser.add_argument("--fps", type=float, default=SAMPLE_RATE_HZ,
                        help="Sample rate (and requested camera frame rate)")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--video", type=Path, default=None,
                        help="Read frames from this video file instead of a camera")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; log BPM to stdout only")
    parser.add_argument("--bandpass", action="store_true",
                        help="Band-pass filter the signal before peak detection")
    parser.add_argument("--json", action="store_true",
                        help="Print the final reading as JSON")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def parse_resolution(text: str) -> tuple[int, int]:
    w, h = (int(v) for v in text.lower().split("x"))
    if w <= 0 or h <= 0:
        raise ValueError(text)
    return w, h


def format_reading(reading: Reading) -> str:
    if not reading.is_valid:
        return (
            f"No reliable pulse detected (quality={reading.quality}, "
            f"samples={reading.sample_count}).  Cover the lens fully and keep still."
        )
    return (
        f"Heart rate {reading.heart_rate_bpm} BPM  HRV {reading.hrv_ms:.1f} ms  "
        f"confidence {reading.confidence:.2f}  quality {reading.quality}"
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        resolution = parse_resolution(args.resolution)
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1
    if args.duration <= 0 or args.fps <= 0:
        logger.error("--duration and --fps must be positive.")
        return 1

    config = MeasurementConfig(
        duration_seconds=args.duration,
        sample_rate_hz=args.fps,
        bandpass=args.bandpass,
    )
    source = FrameSource(
        resolution=resolution,
        fps=args.fps,
        camera_index=args.camera_index,
        video_path=args.video,
    )

    errors: list[str] = []
    last_log = [0.0]

    def on_preview(preview: LivePreview) -> None:
        if not args.headless:
            return
        now = time.monotonic()
        if now - last_log[0] < 1.0:
            return
        last_log[0] = now
        ts = time.strftime("%H:%M:%S")
        if preview.heart_rate_bpm:
            print(f"[{ts}] {preview.progress:3.0f}%  BPM={preview.heart_rate_bpm}  quality={preview.quality}")
        else:
            print(f"[{ts}] {preview.progress:3.0f}%  Waiting for signal…  samples={preview.sample_count}")

    session = MeasurementSession(
        config=config,
        on_preview=on_preview,
        on_error=errors.append,
    )

    vis = Visualizer(resolution=resolution)
    runner: MeasurementRunner

    def on_frame(frame: np.ndarray, sess: MeasurementSession) -> None:
        annotated = vis.draw(frame, sess.preview, sess.state, sess.sample_values)
        cv2.imshow(WINDOW_TITLE, annotated)
        key = cv2.waitKey(1) & 0xFF
        if key in (ord("q"), 27):          # q or ESC
            logger.info("Measurement cancelled by user.")
            runner.stop()

    runner = MeasurementRunner(
        session,
        source,
        on_frame=None if args.headless else on_frame,
    )

    if not args.headless:
        cv2.namedWindow(WINDOW_TITLE, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(WINDOW_TITLE, *resolution)

    logger.info("Cover the camera with your fingertip and keep still.")
    try:
        reading = runner.run()
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        runner.stop()
        reading = None
    finally:
        if not args.headless:
            cv2.destroyAllWindows()

    if reading is None:
        if errors:
            logger.error("Measurement failed: %s", errors[-1])
        return 1

    if args.json:
        print(json.dumps(reading.to_dict(), indent=2))
    else:
        print(format_reading(reading))
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
