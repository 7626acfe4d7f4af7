from __future__ import annotations

import numpy as np
from math import gcd
from typing import Tuple
from scipy.io.wavfile import read as wav_read
from scipy import signal
import soundfile as sf


def _to_float32(audio: np.ndarray) -> np.ndarray:
    if audio.dtype == np.int16:
        return audio.astype(np.float32) / 32768.0
    if audio.dtype == np.int32:
        return audio.astype(np.float32) / 2147483648.0
    if audio.dtype == np.uint8:
        return (audio.astype(np.float32) - 128.0) / 128.0
    return audio.astype(np.float32)


def _resample_if_needed(audio: np.ndarray, in_sr: int, target_sr: int) -> np.ndarray:
    if in_sr == target_sr:
        return audio.astype(np.float32, copy=False)
    g = gcd(in_sr, target_sr)
    up, down = target_sr // g, in_sr // g
    # resample_poly works along axis 0, all channels at once
    return signal.resample_poly(audio, up, down, axis=0).astype(np.float32)


def load_audio(audio_path: str, target_sr: int) -> Tuple[np.ndarray, int]:
    """Load audio as float32 array with shape (samples, channels), resampled to target_sr.

    Tries scipy.io.wavfile first; falls back to soundfile for FLAC/OGG/etc.
    """
    p = str(audio_path)
    try:
        sr, audio = wav_read(p)
    except Exception:
        audio, sr = sf.read(p, always_2d=True, dtype='float32')
    audio = _to_float32(np.asarray(audio))
    if audio.ndim == 1:
        audio = audio[:, None]
    return _resample_if_needed(audio, int(sr), int(target_sr)), int(target_sr)
