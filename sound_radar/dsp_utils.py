from __future__ import annotations

import math
import numpy as np

from sound_radar.config import LEVEL_GAIN, LEVEL_FLOOR


def compute_rms(frame: np.ndarray, channel: int = 0) -> float:
    """RMS of one channel of a (samples x channels) frame; 1-D input is a single channel."""
    x = np.asarray(frame)
    if x.ndim == 2:
        x = x[:, channel]
    if x.size == 0:
        return 0.0
    x = x.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(x * x)))


def compute_level(frame: np.ndarray, gain: float = LEVEL_GAIN, floor: float = LEVEL_FLOOR) -> float:
    """Log loudness of channel 0: gain * log10(rms).

    Silent or degenerate frames (rms == 0, NaN/inf samples) map to `floor`;
    any positive finite rms gives a finite level, so the output is always finite.
    """
    rms = compute_rms(frame, channel=0)
    if not math.isfinite(rms) or rms <= 0.0:
        return float(floor)
    return float(gain) * math.log10(rms)
