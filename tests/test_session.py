"""
Unit tests for MeasurementSession.
Run with:  pytest tests/test_session.py
"""

from __future__ import annotations

import json

import numpy as np
import pytest

from biometric_capture.config import MeasurementConfig
from biometric_capture.quality import Quality
from biometric_capture.session import MeasurementSession, Sample, SessionState
from tests.signals import (
    FakeClock,
    alternating_positions,
    beat_signal,
    periodic_signal,
    red_frame,
)

FPS = 30.0
TICKS_PER_SECOND = 10


def make_session(**kwargs):
    clock = FakeClock()
    readings, previews, errors = [], [], []
    session = MeasurementSession(
        on_reading=readings.append,
        on_preview=previews.append,
        on_error=errors.append,
        clock=clock,
        **kwargs,
    )
    return session, clock, readings, previews, errors


def feed(session, clock, signal, fps=FPS):
    """Push *signal* at *fps*, ticking every 3 samples like a 100 ms timer."""
    t0 = clock.t
    for i, value in enumerate(signal):
        clock.t = t0 + i / fps
        session.push_sample(value)
        if i % 3 == 0:
            session.tick()


class TestLifecycle:

    def test_initially_idle(self):
        session, *_ = make_session()
        assert session.state is SessionState.IDLE
        assert session.progress == 0.0
        assert session.reading is None

    def test_start(self):
        session, clock, *_ = make_session()
        clock.t = 5.0
        assert session.start() is True
        assert session.state is SessionState.CAPTURING
        assert session.started_at == 5.0

    def test_start_while_capturing_refused(self):
        session, clock, *_ = make_session()
        session.start()
        session.push_sample(1.0)
        assert session.start() is False
        assert len(session.samples) == 1

    def test_samples_ignored_when_idle(self):
        session, _, _, previews, _ = make_session()
        assert session.push_sample(10.0) is None
        assert session.push_frame(red_frame(10)) is None
        assert session.samples == ()
        assert previews == []

    def test_tick_when_idle_is_noop(self):
        session, *_ = make_session()
        assert session.tick() is None
        assert session.state is SessionState.IDLE

    def test_stop_only_from_capturing(self):
        session, *_ = make_session()
        assert session.stop() is False
        session.start()
        assert session.stop() is True
        assert session.state is SessionState.STOPPED
        assert session.stop() is False

    def test_reset_returns_to_idle(self):
        session, *_ = make_session()
        session.start()
        session.push_sample(1.0)
        session.reset()
        assert session.state is SessionState.IDLE
        assert session.samples == ()


class TestSampling:

    def test_samples_indexed_in_order(self):
        session, *_ = make_session()
        session.start()
        for v in (3.0, 1.0, 2.0):
            session.push_sample(v)
        assert session.samples == (Sample(0, 3.0), Sample(1, 1.0), Sample(2, 2.0))
        assert session.sample_values.tolist() == [3.0, 1.0, 2.0]

    def test_push_frame_extracts_red(self):
        session, *_ = make_session()
        session.start()
        preview = session.push_frame(red_frame(123))
        assert preview is not None
        assert session.sample_values.tolist() == [123.0]

    def test_frame_without_value_skipped(self):
        session, _, _, previews, _ = make_session()
        session.start()
        assert session.push_frame(None) is None
        assert session.push_frame(np.zeros((0, 0, 3), dtype=np.uint8)) is None
        assert session.samples == ()
        assert previews == []

    def test_non_finite_sample_dropped(self):
        session, *_ = make_session()
        session.start()
        assert session.push_sample(float("nan")) is None
        assert session.push_sample(float("inf")) is None
        assert session.samples == ()

    def test_non_numeric_sample_dropped(self):
        session, _, _, previews, _ = make_session()
        session.start()
        assert session.push_sample("bright") is None
        assert session.push_sample(None) is None
        assert session.samples == ()
        assert previews == []

    def test_preview_per_sample(self):
        session, _, _, previews, _ = make_session()
        session.start()
        for v in periodic_signal(10, 5):
            session.push_sample(v)
        assert len(previews) == 10
        assert previews[-1].sample_count == 10
        # Not enough data for a rate yet
        assert previews[-1].heart_rate_bpm is None
        assert previews[-1].quality is Quality.POOR

    def test_live_preview_reports_rate(self):
        session, _, _, previews, _ = make_session()
        session.start()
        for v in periodic_signal(120, 25):
            session.push_sample(v)
        assert previews[-1].heart_rate_bpm == 72
        assert previews[-1].quality is Quality.EXCELLENT

    def test_live_preview_keeps_last_valid_rate(self):
        session, _, _, previews, _ = make_session()
        session.start()
        for v in periodic_signal(120, 25):
            session.push_sample(v)
        # A large spike moves the mean above every earlier peak.
        session.push_sample(10_000.0)
        assert previews[-1].heart_rate_bpm == 72
        assert previews[-1].quality is Quality.POOR

    def test_live_preview_does_not_change_state(self):
        session, *_ = make_session()
        session.start()
        for v in periodic_signal(300, 25):
            session.push_sample(v)
        assert session.state is SessionState.CAPTURING
        assert session.reading is None


class TestCompletion:

    def test_progress_advances_with_time(self):
        session, clock, *_ = make_session()
        session.start()
        clock.advance(15.0)
        session.tick()
        assert session.progress == pytest.approx(50.0)
        assert session.state is SessionState.CAPTURING

    def test_end_to_end_72_bpm(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        positions = alternating_positions(10, [24, 26], 890)
        feed(session, clock, beat_signal(positions, 900))
        assert readings == []

        clock.t = 30.0
        reading = session.tick()

        assert readings == [reading]
        assert session.state is SessionState.COMPLETE
        assert session.progress == 100.0
        assert 70 <= reading.heart_rate_bpm <= 74
        assert reading.quality in (Quality.GOOD, Quality.EXCELLENT)
        assert reading.hrv_ms > 0
        assert reading.sample_count == 900
        assert reading.duration_seconds == pytest.approx(30.0)
        assert reading.produced_at.tzinfo is not None

    def test_single_completion(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        feed(session, clock, periodic_signal(900, 30))
        clock.t = 30.0
        for _ in range(300):
            session.tick()
            clock.advance(0.1)
        assert len(readings) == 1
        assert readings[0].heart_rate_bpm == 60

    def test_stop_suppresses_completion(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        feed(session, clock, periodic_signal(300, 30))
        session.stop()
        count = len(session.samples)

        for _ in range(600):
            clock.advance(0.1)
            session.tick()
            session.push_sample(1.0)

        assert readings == []
        assert session.state is SessionState.STOPPED
        assert session.reading is None
        assert len(session.samples) == count

    def test_no_signal_gives_poor_zero_reading(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        clock.t = 30.0
        reading = session.tick()
        assert reading.heart_rate_bpm == 0
        assert reading.confidence == 0.0
        assert reading.hrv_ms == 0.0
        assert reading.quality is Quality.POOR
        assert reading.sample_count == 0
        assert not reading.is_valid

    def test_out_of_band_signal_gives_zero_reading(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        feed(session, clock, periodic_signal(900, 8))       # 225 BPM
        clock.t = 30.0
        reading = session.tick()
        assert reading.heart_rate_bpm == 0
        assert reading.confidence == 0.0
        assert reading.quality is Quality.POOR

    def test_finalize_early(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        feed(session, clock, periodic_signal(300, 30))
        clock.t = 10.0
        reading = session.finalize()
        assert readings == [reading]
        assert reading.heart_rate_bpm == 60
        assert reading.duration_seconds == pytest.approx(10.0)
        clock.t = 40.0
        assert session.tick() is None
        assert session.finalize() is None
        assert len(readings) == 1

    def test_finalize_when_idle(self):
        session, _, readings, _, _ = make_session()
        assert session.finalize() is None
        assert readings == []

    def test_restart_after_completion(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        feed(session, clock, periodic_signal(900, 30))
        clock.t = 30.0
        session.tick()

        clock.t = 100.0
        assert session.start() is True
        assert session.samples == ()
        assert session.progress == 0.0
        assert session.reading is None
        feed(session, clock, periodic_signal(900, 25))
        clock.t = 130.0
        session.tick()
        assert [r.heart_rate_bpm for r in readings] == [60, 72]

    def test_restart_after_stop(self):
        session, clock, readings, _, _ = make_session()
        session.start()
        session.push_sample(5.0)
        session.stop()
        assert session.start() is True
        assert session.samples == ()

    def test_custom_duration(self):
        session, clock, readings, _, _ = make_session(
            config=MeasurementConfig(duration_seconds=5.0)
        )
        session.start()
        feed(session, clock, periodic_signal(150, 30))
        clock.t = 5.0
        reading = session.tick()
        assert reading.duration_seconds == pytest.approx(5.0)
        assert reading.heart_rate_bpm == 60

    def test_bandpass_session(self):
        session, clock, readings, _, _ = make_session(
            config=MeasurementConfig(bandpass=True)
        )
        session.start()
        feed(session, clock, periodic_signal(900, 25))
        clock.t = 30.0
        reading = session.tick()
        assert 69 <= reading.heart_rate_bpm <= 75


class TestErrorChannel:

    def test_report_error_does_not_change_state(self):
        session, _, readings, _, errors = make_session()
        session.start()
        session.report_error("Permission denied")
        assert errors == ["Permission denied"]
        assert session.state is SessionState.CAPTURING
        assert readings == []

    def test_report_error_without_callback(self):
        session = MeasurementSession(clock=FakeClock())
        session.report_error("camera unavailable")
        assert session.state is SessionState.IDLE

    def test_failing_callbacks_are_contained(self):
        def explode(_):
            raise ValueError("display gone")

        clock = FakeClock()
        session = MeasurementSession(
            on_reading=explode, on_preview=explode, on_error=explode, clock=clock,
        )
        session.start()
        feed(session, clock, periodic_signal(300, 30))
        session.report_error("camera unavailable")
        assert len(session.samples) == 300
        assert session.state is SessionState.CAPTURING

        clock.t = 30.0
        reading = session.tick()
        assert reading is not None
        assert reading.heart_rate_bpm == 60
        assert session.state is SessionState.COMPLETE
        assert session.tick() is None


class TestReading:

    def test_to_dict_is_json_ready(self):
        session, clock, *_ = make_session()
        session.start()
        feed(session, clock, periodic_signal(900, 30))
        clock.t = 30.0
        data = session.tick().to_dict()
        decoded = json.loads(json.dumps(data))
        assert decoded["heart_rate_bpm"] == 60
        assert decoded["quality"] == "excellent"
        assert decoded["sample_count"] == 900
        assert decoded["duration_seconds"] == 30.0
        assert "produced_at" in decoded
