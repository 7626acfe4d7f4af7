from __future__ import annotations

from dataclasses import dataclass, field
import numpy as np


@dataclass
class AudioFrame:
    idx: int
    ts: float
    audio: np.ndarray  # shape (frame_size, channels), float32
    sr: int


@dataclass
class BaselineState:
    value: float = 0.0
    is_calibrated: bool = False


@dataclass
class StreamState:
    """Mutable per-stream state, owned by exactly one running stream."""
    baseline: BaselineState = field(default_factory=BaselineState)
    smoothed_angle: float = 0.0
    frames: int = 0


@dataclass
class RadarResult:
    """Per-frame output for the presentation layer.

    angle_deg is a loudness-driven display heuristic, not a bearing to the
    source: it carries no spatial information.
    """
    frame_idx: int
    is_locking_on: bool
    angle_deg: float
    distance_m: float
    level: float
