"""
Measurement runner.

Drives a :class:`~biometric_capture.session.MeasurementSession` from a frame
source.  A producer thread only reads frames and posts them onto a queue; the
consumer loop in the calling thread is the only code that touches the session.
It processes frames as they arrive and fires ``session.tick()`` every
``tick_interval`` seconds, whether or not frames keep arriving, so no locking
is needed around the session.

The queue is bounded: when the consumer falls behind, the producer blocks
until there is room (or a stop is requested).  A source that runs dry or fails
before the measurement is over does not end it; the timer keeps ticking until
the session completes or :meth:`MeasurementRunner.stop` is called.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Generator, Optional, Protocol, Tuple

import numpy as np

from biometric_capture.config import FRAME_QUEUE_SIZE, TICK_INTERVAL_S
from biometric_capture.extractor import Roi
from biometric_capture.session import MeasurementSession, Reading, SessionState

logger = logging.getLogger(__name__)

_FRAME = "frame"
_ERROR = "error"
_END   = "end"

Event = Tuple[str, Any]
FrameCallback = Callable[[np.ndarray, MeasurementSession], None]


class Source(Protocol):
    def open(self) -> None: ...
    def close(self) -> None: ...
    def frames(self) -> Generator[np.ndarray, None, None]: ...


class MeasurementRunner:
    """
    Run one measurement end-to-end.

    Parameters
    ----------
    session:
        Session to drive.  Must not be capturing already.
    source:
        Anything with ``open()``, ``close()`` and a ``frames()`` generator,
        e.g. :class:`~biometric_capture.camera.FrameSource`.
    tick_interval:
        Seconds between progress ticks (default 0.1).
    on_frame:
        Called on the consumer thread after each frame has been pushed into
        the session; used for display.  It may call :meth:`stop`.
    roi:
        Optional fixed region of interest passed to the extractor.
    queue_size:
        Maximum number of frames waiting between the producer and the
        consumer (default 10).
    """

    def __init__(
        self,
        session: MeasurementSession,
        source: Source,
        tick_interval: float = TICK_INTERVAL_S,
        on_frame: Optional[FrameCallback] = None,
        roi: Optional[Roi] = None,
        clock: Callable[[], float] = time.monotonic,
        queue_size: int = FRAME_QUEUE_SIZE,
    ) -> None:
        self.session = session
        self.source = source
        self.tick_interval = tick_interval
        self.on_frame = on_frame
        self.roi = roi
        self._clock = clock
        self.queue_size = queue_size

        self._events: "queue.Queue[Event]" = queue.Queue(maxsize=self.queue_size)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Cancel the measurement.  Safe to call from any thread."""
        self._stop_event.set()

    def run(self) -> Optional[Reading]:
        """
        Open the source, capture until the session completes or is stopped,
        and return the :class:`Reading` (*None* if cancelled or the source
        could not be opened).
        """
        try:
            self.source.open()
        except RuntimeError as exc:
            self.session.report_error(str(exc))
            return None

        self._stop_event.clear()
        self._events = queue.Queue(maxsize=self.queue_size)
        producer = threading.Thread(target=self._produce, name="frame-source", daemon=True)

        try:
            if not self.session.start():
                return None
            producer.start()
            self._consume()
        finally:
            self._stop_event.set()
            if producer.is_alive():
                producer.join(timeout=1.0)
            self.source.close()

        if self.session.state is SessionState.COMPLETE:
            return self.session.reading
        return None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _post(self, event: Event) -> bool:
        """Put *event* on the bounded queue, giving up once a stop is requested."""
        while not self._stop_event.is_set():
            try:
                self._events.put(event, timeout=self.tick_interval)
                return True
            except queue.Full:
                continue
        return False

    def _produce(self) -> None:
        try:
            for frame in self.source.frames():
                if not self._post((_FRAME, frame)):
                    break
        except Exception as exc:                          # noqa: BLE001
            self._post((_ERROR, f"Frame source failed: {exc}"))
        finally:
            self._post((_END, None))

    def _stop_requested(self) -> bool:
        if self._stop_event.is_set():
            self.session.stop()
            return True
        return False

    def _consume(self) -> None:
        next_tick = self._clock() + self.tick_interval

        while self.session.is_capturing:
            if self._stop_requested():
                break

            timeout = max(0.0, next_tick - self._clock())
            try:
                kind, payload = self._events.get(timeout=timeout)
            except queue.Empty:
                kind, payload = None, None

            if kind == _FRAME:
                self.session.push_frame(payload, self.roi)
                if self.on_frame is not None:
                    self.on_frame(payload, self.session)
            elif kind == _ERROR:
                self.session.report_error(payload)
            elif kind == _END:
                logger.info(
                    "Frame source finished at %.0f%%; waiting for the timer.",
                    self.session.progress,
                )

            if self._stop_requested():
                break

            now = self._clock()
            if now >= next_tick:
                self.session.tick()
                next_tick = now + self.tick_interval
