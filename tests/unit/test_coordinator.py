# pylint: disable=missing-module-docstring,missing-function-docstring

import queue
import threading
import time

import numpy as np
import pytest

from sound_radar.messages import AudioFrame
from sound_radar.pipeline.audio_source import AudioSourceError
from sound_radar.pipeline.coordinator import RadarPipeline, _put_drop_oldest
from sound_radar.pipeline.smoothing import AngleSmoother


def make_frame(value: float, idx: int = 0, n: int = 4) -> AudioFrame:
    return AudioFrame(idx=idx, ts=0.0, audio=np.full((n, 1), value, dtype=np.float32), sr=48000)


class FakeSource:
    """Push-style source driven by the test thread."""
    def __init__(self):
        self.callback = None
        self.open_calls = 0
        self.close_calls = 0

    def open(self, callback):
        self.open_calls += 1
        self.callback = callback

    def close(self):
        self.close_calls += 1
        self.callback = None

    def push(self, frame):
        self.callback(frame)


class FailingSource:
    def __init__(self, exc):
        self.exc = exc

    def open(self, callback):
        raise self.exc

    def close(self):
        pass


def collect(pipeline, n, timeout=2.0):
    out = []
    for _ in range(n):
        r = pipeline.get_result(timeout=timeout)
        assert r is not None
        out.append(r)
    return out


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


# ---------------------------------------------------------------------
# Sequencing
# ---------------------------------------------------------------------

def test_end_to_end_example():
    results = list(RadarPipeline().run([make_frame(1.0, 0), make_frame(10.0, 1)]))

    first, second = results
    assert first.is_locking_on is False
    assert first.level == pytest.approx(0.0)
    assert first.angle_deg == pytest.approx(0.0)

    assert second.level == pytest.approx(100.0)
    assert second.is_locking_on is True
    assert second.angle_deg == pytest.approx(40.0)
    assert second.distance_m == pytest.approx(10 ** ((1 - 100) / 200))
    assert second.distance_m == pytest.approx(0.3199, abs=1e-4)


def test_first_frame_never_locks_on():
    for value in (0.0, 1e-6, 1.0, 1000.0):
        first = next(RadarPipeline().run([make_frame(value)]))
        assert first.is_locking_on is False


def test_silent_frames_do_not_abort_stream():
    frames = [make_frame(0.0, i) for i in range(3)] + [make_frame(1.0, 3)]
    results = list(RadarPipeline().run(frames))

    assert len(results) == 4
    assert all(np.isfinite(r.distance_m) for r in results)
    # Baseline calibrated on silence, so a real sound locks on
    assert results[-1].is_locking_on is True


def test_process_mutates_only_given_state():
    pipeline = RadarPipeline()
    a = pipeline.new_state()
    b = pipeline.new_state()

    pipeline.process(make_frame(10.0), a)

    assert a.baseline.is_calibrated is True
    assert a.frames == 1
    assert b.baseline.is_calibrated is False
    assert b.smoothed_angle == 0.0


def test_fresh_pipelines_produce_identical_sequences():
    rng = np.random.default_rng(7)
    values = rng.uniform(0.0, 5.0, size=50)
    frames = [make_frame(float(v), i) for i, v in enumerate(values)]

    first = list(RadarPipeline().run(frames))
    second = list(RadarPipeline().run(frames))
    pipeline = RadarPipeline()
    third = list(pipeline.run(frames))
    fourth = list(pipeline.run(frames))

    assert first == second == third == fourth


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------

def test_stop_before_start_is_noop():
    source = FakeSource()
    pipeline = RadarPipeline(source=source)
    before = pipeline.stats()

    pipeline.stop()
    pipeline.stop()

    assert pipeline.stats() == before
    assert pipeline.is_running is False
    assert source.close_calls == 0


def test_double_start_opens_source_once():
    source = FakeSource()
    pipeline = RadarPipeline(source=source)

    pipeline.start()
    pipeline.start()
    try:
        assert source.open_calls == 1
        assert pipeline.is_running is True
    finally:
        pipeline.stop()
        pipeline.stop()

    assert source.close_calls == 1
    assert pipeline.is_running is False


def test_threaded_results_match_offline_run():
    values = [1.0, 10.0, 10.0, 0.5, 3.0, 1.2]
    frames = [make_frame(v, i) for i, v in enumerate(values)]
    source = FakeSource()
    pipeline = RadarPipeline(source=source)

    pipeline.start()
    try:
        for f in frames:
            source.push(f)
        live = collect(pipeline, len(frames))
    finally:
        pipeline.stop()

    assert [r.frame_idx for r in live] == list(range(len(frames)))
    assert live == list(RadarPipeline().run(frames))


def test_restart_resets_stream_state():
    source = FakeSource()
    pipeline = RadarPipeline(source=source)

    pipeline.start()
    source.push(make_frame(1.0, 0))
    source.push(make_frame(10.0, 1))
    assert collect(pipeline, 2)[1].is_locking_on is True
    pipeline.stop()

    pipeline.start()
    try:
        source.push(make_frame(10.0, 0))
        (r,) = collect(pipeline, 1)
    finally:
        pipeline.stop()

    assert r.is_locking_on is False
    assert r.angle_deg == pytest.approx(40.0)


def test_stop_discards_undelivered_results():
    source = FakeSource()
    pipeline = RadarPipeline(source=source)

    pipeline.start()
    for i in range(3):
        source.push(make_frame(1.0, i))
    assert wait_for(lambda: pipeline.stats()["frames_processed"] == 3)
    pipeline.stop()

    assert pipeline.drain_results() == []


def test_in_flight_result_of_stopped_stream_is_dropped():
    entered = threading.Event()
    release = threading.Event()

    class BlockingSmoother(AngleSmoother):
        def update(self, previous, level):
            entered.set()
            release.wait(2)
            return super().update(previous, level)

    source = FakeSource()
    pipeline = RadarPipeline(source=source, smoother=BlockingSmoother())
    pipeline.start()
    source.push(make_frame(1.0))
    assert entered.wait(2)

    stopper = threading.Thread(target=pipeline.stop)
    stopper.start()
    assert wait_for(lambda: not pipeline.is_running)
    release.set()
    stopper.join(2)

    assert pipeline.get_result(timeout=0.1) is None


def test_stop_during_slow_open_releases_source():
    opening = threading.Event()
    allow = threading.Event()

    class SlowOpenSource(FakeSource):
        def __init__(self):
            super().__init__()
            self.is_open = False

        def open(self, callback):
            opening.set()
            allow.wait(2)
            super().open(callback)
            self.is_open = True

        def close(self):
            super().close()
            self.is_open = False

    source = SlowOpenSource()
    pipeline = RadarPipeline(source=source)
    starter = threading.Thread(target=pipeline.start)
    starter.start()
    assert opening.wait(2)

    stopper = threading.Thread(target=pipeline.stop)
    stopper.start()
    time.sleep(0.05)
    allow.set()
    starter.join(2)
    stopper.join(2)

    assert pipeline.is_running is False
    assert source.is_open is False
    assert source.open_calls == source.close_calls == 1

    # A fresh start still works afterwards
    pipeline.start()
    try:
        assert source.is_open is True
        source.push(make_frame(1.0))
        assert pipeline.get_result(timeout=2.0) is not None
    finally:
        pipeline.stop()
    assert source.is_open is False


# ---------------------------------------------------------------------
# Source failures
# ---------------------------------------------------------------------

def test_source_failure_surfaces_from_start():
    pipeline = RadarPipeline(source=FailingSource(AudioSourceError("no mic")))

    with pytest.raises(AudioSourceError, match="no mic"):
        pipeline.start()

    assert pipeline.is_running is False
    assert pipeline.get_result(timeout=0.05) is None


def test_unexpected_source_error_is_wrapped():
    pipeline = RadarPipeline(source=FailingSource(OSError("device busy")))

    with pytest.raises(AudioSourceError, match="device busy"):
        pipeline.start()

    assert pipeline.is_running is False


def test_start_without_source_fails():
    with pytest.raises(AudioSourceError):
        RadarPipeline().start()


# ---------------------------------------------------------------------
# Backpressure
# ---------------------------------------------------------------------

def test_full_queue_drops_oldest():
    q = queue.Queue(maxsize=2)

    assert _put_drop_oldest(q, 1) is True
    assert _put_drop_oldest(q, 2) is True
    assert _put_drop_oldest(q, 3) is False

    assert [q.get_nowait(), q.get_nowait()] == [2, 3]


def test_rejects_non_positive_queue_size():
    with pytest.raises(ValueError):
        RadarPipeline(frame_queue_size=0)
