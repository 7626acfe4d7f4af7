from __future__ import annotations

import os
import queue
import threading
import time
from typing import Iterable, Iterator, List, Optional

from sound_radar.config import LEVEL_GAIN, LEVEL_FLOOR, FRAME_QUEUE_SIZE, RESULT_QUEUE_SIZE
from sound_radar.dsp_utils import compute_level
from sound_radar.messages import AudioFrame, RadarResult, StreamState
from sound_radar.pipeline.audio_source import AudioSourceError
from sound_radar.pipeline.baseline import BaselineCalibrator
from sound_radar.pipeline.distance import DistanceEstimator
from sound_radar.pipeline.smoothing import AngleSmoother


def _put_drop_oldest(q: queue.Queue, item) -> bool:
    """Non-blocking put; on a full queue drop the oldest item. Returns False if anything was dropped."""
    try:
        q.put_nowait(item)
        return True
    except queue.Full:
        pass
    try:
        q.get_nowait()
    except queue.Empty:
        pass
    try:
        q.put_nowait(item)
    except queue.Full:
        pass
    return False


class _Stream:
    """Everything owned by one start()..stop() lifetime."""
    def __init__(self, state: StreamState, frame_queue_size: int):
        self.state = state
        self.frames: "queue.Queue[AudioFrame]" = queue.Queue(maxsize=frame_queue_size)
        self.stop_event = threading.Event()
        self.worker: Optional[threading.Thread] = None


class RadarPipeline:
    """Per-frame level -> detection -> smoothed angle -> distance.

    Frames are pushed by the source on its delivery thread into a bounded
    queue (drop-oldest, never blocks). One worker thread per stream processes
    them in order and publishes RadarResult objects to a result queue that the
    consumer drains from its own thread with get_result() / drain_results().
    """
    def __init__(
        self,
        source=None,
        calibrator: Optional[BaselineCalibrator] = None,
        smoother: Optional[AngleSmoother] = None,
        estimator: Optional[DistanceEstimator] = None,
        level_gain: float = LEVEL_GAIN,
        level_floor: float = LEVEL_FLOOR,
        frame_queue_size: int = FRAME_QUEUE_SIZE,
        result_queue_size: int = RESULT_QUEUE_SIZE,
        log_perf: Optional[bool] = None,
    ):
        if int(frame_queue_size) <= 0 or int(result_queue_size) <= 0:
            raise ValueError("queue sizes must be > 0")
        self.source = source
        self.calibrator = calibrator or BaselineCalibrator()
        self.smoother = smoother or AngleSmoother()
        self.estimator = estimator or DistanceEstimator()
        self.level_gain = float(level_gain)
        self.level_floor = float(level_floor)
        self.frame_queue_size = int(frame_queue_size)
        if log_perf is None:
            log_perf = os.environ.get('PERF_PROFILE', '0') in ('1', 'true', 'True')
        self.log_perf = bool(log_perf)

        self._lifecycle = threading.Lock()
        self._lock = threading.Lock()
        self._stream: Optional[_Stream] = None
        self._results: "queue.Queue[RadarResult]" = queue.Queue(maxsize=int(result_queue_size))
        self._frames_processed = 0
        self._frames_dropped = 0
        self._results_dropped = 0
        self._errors = 0

    # --- Core sequencing ---
    @staticmethod
    def new_state() -> StreamState:
        return StreamState()

    def process(self, frame: AudioFrame, state: StreamState) -> RadarResult:
        level = compute_level(frame.audio, gain=self.level_gain, floor=self.level_floor)
        locking_on = self.calibrator.update(state.baseline, level)
        state.smoothed_angle = self.smoother.update(state.smoothed_angle, level)
        distance = self.estimator.estimate(level)
        state.frames += 1
        return RadarResult(
            frame_idx=frame.idx,
            is_locking_on=locking_on,
            angle_deg=state.smoothed_angle,
            distance_m=distance,
            level=level,
        )

    def run(self, frames: Iterable[AudioFrame]) -> Iterator[RadarResult]:
        """Synchronous run over an iterable of frames with a fresh state."""
        state = self.new_state()
        for frame in frames:
            yield self.process(frame, state)

    # --- Lifecycle ---
    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """Open the source and begin processing. No-op if already running.

        Raises AudioSourceError if the source cannot be opened; in that case
        no results are ever published for the attempt.
        """
        # start and stop are serialised so stop() never runs between creating a
        # stream and opening its source
        with self._lifecycle:
            with self._lock:
                if self._stream is not None:
                    return
                if self.source is None:
                    raise AudioSourceError("RadarPipeline has no frame source")
                stream = _Stream(self.new_state(), self.frame_queue_size)
                self._clear_results()
                stream.worker = threading.Thread(target=self._worker_loop, args=(stream,), name="RadarWorker", daemon=True)
                self._stream = stream
                stream.worker.start()
            try:
                self.source.open(lambda frame: self._on_frame(stream, frame))
            except Exception as e:
                self._teardown(stream, close_source=False)
                if isinstance(e, AudioSourceError):
                    raise
                raise AudioSourceError(f"Frame source failed to start: {e}") from e
        print(f"[radar] started (offset={self.calibrator.offset}, alpha={self.smoother.alpha}, "
              f"ref={self.estimator.reference_level}, atten={self.estimator.attenuation_factor})")

    def stop(self) -> None:
        """Stop consuming frames. Safe at any time; no-op if not running."""
        with self._lifecycle:
            stream = self._stream
            if stream is None:
                return
            self._teardown(stream, close_source=True)
        print(f"[radar] stopped after {stream.state.frames} frames")

    def _teardown(self, stream: _Stream, close_source: bool) -> None:
        with self._lock:
            if self._stream is not stream:
                return
            self._stream = None
            stream.stop_event.set()
            self._clear_results()
        if close_source:
            self.source.close()
        if stream.worker is not None and stream.worker is not threading.current_thread():
            stream.worker.join(timeout=2)
        # Frames still queued belong to a dead stream
        while True:
            try:
                stream.frames.get_nowait()
            except queue.Empty:
                break

    # --- Delivery context ---
    def _on_frame(self, stream: _Stream, frame: AudioFrame) -> None:
        if stream.stop_event.is_set():
            return
        if not _put_drop_oldest(stream.frames, frame):
            self._frames_dropped += 1

    # --- Worker ---
    def _worker_loop(self, stream: _Stream) -> None:
        log_last_ts = time.perf_counter()
        log_frames = 0
        log_compute_ms = 0.0
        while not stream.stop_event.is_set():
            try:
                frame = stream.frames.get(timeout=0.05)
            except queue.Empty:
                continue
            t = time.perf_counter()
            try:
                result = self.process(frame, stream.state)
            except Exception as e:
                self._errors += 1
                if self._errors <= 3 or (self._errors % 50 == 0):
                    print(f"[radar][warn] frame {frame.idx} skipped ({e}) (error #{self._errors})")
                continue
            log_compute_ms += (time.perf_counter() - t) * 1000.0
            log_frames += 1
            self._publish(stream, result)

            if self.log_perf:
                now = time.perf_counter()
                if (now - log_last_ts) >= 1.0:
                    sec = now - log_last_ts
                    print(
                        f"[perf] fps={log_frames / sec:.2f} | compute_ms avg={log_compute_ms / max(1, log_frames):.3f} | "
                        f"queued={stream.frames.qsize()} | dropped frames={self._frames_dropped} results={self._results_dropped}"
                    )
                    log_last_ts = now
                    log_frames = 0
                    log_compute_ms = 0.0

    def _publish(self, stream: _Stream, result: RadarResult) -> None:
        with self._lock:
            # Results of a stopped (or replaced) stream are discarded
            if self._stream is not stream or stream.stop_event.is_set():
                return
            self._frames_processed += 1
            if not _put_drop_oldest(self._results, result):
                self._results_dropped += 1

    # --- Consumer context ---
    def _clear_results(self) -> None:
        while True:
            try:
                self._results.get_nowait()
            except queue.Empty:
                return

    def get_result(self, timeout: Optional[float] = None) -> Optional[RadarResult]:
        """Next result in frame order, or None if none arrives within timeout."""
        try:
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain_results(self) -> List[RadarResult]:
        out: List[RadarResult] = []
        while True:
            try:
                out.append(self._results.get_nowait())
            except queue.Empty:
                return out

    def stats(self) -> dict:
        return {
            "running": self.is_running,
            "frames_processed": self._frames_processed,
            "frames_dropped": self._frames_dropped,
            "results_dropped": self._results_dropped,
            "errors": self._errors,
        }
