from __future__ import annotations

import threading
import time
import numpy as np
from typing import Callable, Generator, List, Optional
try:
    import sounddevice as sd
    _SD_AVAILABLE = True
except Exception:
    _SD_AVAILABLE = False
from sound_radar.audio_io import load_audio
from sound_radar.config import SAMPLE_RATE, FRAME_SIZE
from sound_radar.messages import AudioFrame


FrameCallback = Callable[[AudioFrame], None]


class AudioSourceError(RuntimeError):
    """The audio device or file could not be opened."""


def _fit_frame(buf: np.ndarray, frame_size: int) -> np.ndarray:
    """Pad with zeros or truncate to exactly frame_size rows."""
    if buf.shape[0] < frame_size:
        out = np.zeros((frame_size, buf.shape[1]), dtype=np.float32)
        out[:buf.shape[0]] = buf
        return out
    return buf[:frame_size]


class AudioSource:
    """Frame source over a WAV/FLAC file or a live input device.

    Two ways to consume it:
    - frames(): pull generator over a file, for offline runs.
    - open(callback) / close(): push delivery on the source's own thread
      (PortAudio callback thread, or a replay thread for files).
    """
    def __init__(
        self,
        backend: str = "file",
        file_path: Optional[str] = None,
        channels: Optional[List[int]] = None,
        device: Optional[int | str] = None,
        frame_size: int = FRAME_SIZE,
        sample_rate: int = SAMPLE_RATE,
        realtime: bool = True,
    ):
        if backend not in ("file", "stream"):
            raise NotImplementedError("AudioSource backend must be 'file' or 'stream'")
        if int(frame_size) <= 0:
            raise ValueError(f"frame_size must be > 0, got {frame_size}")
        self.backend = backend
        self.file_path = file_path
        self.channels = channels
        self.device = device
        self.frame_size = int(frame_size)
        self.sample_rate = int(sample_rate)
        self.realtime = bool(realtime)

        self._stream = None
        self._replay_thread: Optional[threading.Thread] = None
        self._replay_stop = threading.Event()
        self._replay_done = threading.Event()
        self._status_count = 0

    @staticmethod
    def list_devices() -> list:
        if not _SD_AVAILABLE:
            raise AudioSourceError("sounddevice is not available")
        return sd.query_devices()

    @staticmethod
    def autoselect_input(min_channels: int = 1, preferred_name_substr: str = "") -> int:
        if not _SD_AVAILABLE:
            raise AudioSourceError("sounddevice is not available")
        try:
            devices = sd.query_devices()
        except Exception as e:
            raise AudioSourceError(f"Audio device query failed: {e}")
        # Prefer named device
        cand = None
        if preferred_name_substr:
            for i, d in enumerate(devices):
                name = str(d.get('name', ''))
                if preferred_name_substr.lower() in name.lower() and d.get('max_input_channels', 0) >= min_channels:
                    cand = i
                    break
        # Fallback: first with enough inputs
        if cand is None:
            for i, d in enumerate(devices):
                if d.get('max_input_channels', 0) >= min_channels:
                    cand = i
                    break
        if cand is None:
            raise AudioSourceError(f"No suitable input device found (need >={min_channels} input channels). Use --list-devices or --device.")
        return cand

    @property
    def is_open(self) -> bool:
        return self._stream is not None or self._replay_thread is not None

    @property
    def finished(self) -> bool:
        """True once a file replay has delivered its last frame. Live streams never finish."""
        return self._replay_done.is_set()

    # --- File backend ---
    def _load_file(self) -> np.ndarray:
        if not self.file_path:
            raise AudioSourceError("file_path is required for file backend")
        try:
            audio, _ = load_audio(self.file_path, self.sample_rate)  # (samples, channels)
        except Exception as e:
            raise AudioSourceError(f"Could not read {self.file_path}: {e}")
        if self.channels:
            if max(self.channels) >= audio.shape[1]:
                raise AudioSourceError(f"Requested channel {max(self.channels)} but file has {audio.shape[1]} channels")
            audio = audio[:, self.channels]
        return audio

    def _iter_file_frames(self, audio: np.ndarray) -> Generator[AudioFrame, None, None]:
        total = len(audio)
        idx = 0
        frame_idx = 0
        start_time = time.time()
        while idx < total:
            end = min(idx + self.frame_size, total)
            frame = _fit_frame(audio[idx:end, :], self.frame_size)
            yield AudioFrame(idx=frame_idx, ts=time.time() - start_time, audio=frame, sr=self.sample_rate)
            frame_idx += 1
            idx = end

    def frames(self) -> Generator[AudioFrame, None, None]:
        if self.backend != "file":
            raise NotImplementedError("frames() is only available for the file backend; use open() for streams")
        yield from self._iter_file_frames(self._load_file())

    def _replay(self, audio: np.ndarray, callback: FrameCallback):
        hop = self.frame_size / float(self.sample_rate)
        t0 = time.perf_counter()
        for frame in self._iter_file_frames(audio):
            if self._replay_stop.is_set():
                return
            callback(frame)
            if self.realtime:
                # Pace to the frame clock anchored at t0 to avoid drift
                sleep_s = t0 + (frame.idx + 1) * hop - time.perf_counter()
                if sleep_s > 0 and self._replay_stop.wait(sleep_s):
                    return
        self._replay_done.set()

    # --- Stream backend ---
    def _open_stream(self, callback: FrameCallback):
        if not _SD_AVAILABLE:
            raise AudioSourceError("sounddevice is not available. Install it to use stream backend.")
        n_channels = (max(self.channels) + 1) if self.channels else 1
        sel_device = self.device
        if sel_device is None:
            sel_device = AudioSource.autoselect_input(min_channels=n_channels)

        counter = {"idx": 0}
        start_time = time.time()

        def _callback(indata, frames, time_info, status):
            if status:
                # over/under-run: keep running, warn occasionally
                self._status_count += 1
                if self._status_count <= 3 or (self._status_count % 50 == 0):
                    print(f"[source][warn] input status {status} (#{self._status_count})")
            buf = indata.copy().astype(np.float32, copy=False)
            if self.channels is not None:
                buf = buf[:, self.channels]
            frame = AudioFrame(idx=counter["idx"], ts=time.time() - start_time, audio=_fit_frame(buf, self.frame_size), sr=self.sample_rate)
            counter["idx"] += 1
            callback(frame)

        stream = None
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=n_channels,
                dtype='float32',
                blocksize=self.frame_size,
                latency='low',
                device=sel_device,
                callback=_callback,
            )
            stream.start()
        except Exception as e:
            if stream is not None:
                stream.close()
            raise AudioSourceError(f"Could not start input stream on device {sel_device!r}: {e}")
        self._stream = stream

    # --- Push delivery ---
    def open(self, callback: FrameCallback) -> None:
        """Begin delivering frames to callback. Raises AudioSourceError on failure."""
        if self.is_open:
            raise AudioSourceError("AudioSource is already open")
        if self.backend == "file":
            audio = self._load_file()
            self._replay_stop.clear()
            self._replay_done.clear()
            self._replay_thread = threading.Thread(target=self._replay, args=(audio, callback), name="AudioReplay", daemon=True)
            self._replay_thread.start()
            return
        self._open_stream(callback)

    def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            try:
                stream.stop()
            finally:
                stream.close()
        if self._replay_thread is not None:
            self._replay_stop.set()
            if self._replay_thread is not threading.current_thread():
                self._replay_thread.join(timeout=2)
            self._replay_thread = None
