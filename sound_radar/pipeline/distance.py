from __future__ import annotations

import math

from sound_radar.config import REFERENCE_LEVEL, ATTENUATION_FACTOR, MAX_DISTANCE_EXPONENT


class DistanceEstimator:
    """Inverse log-distance heuristic: louder means closer.

    distance = 10 ** ((reference_level - level) / (2 * attenuation_factor))

    An approximation for display, not a calibrated acoustic model.
    """
    def __init__(self, reference_level: float = REFERENCE_LEVEL, attenuation_factor: float = ATTENUATION_FACTOR):
        attenuation_factor = float(attenuation_factor)
        if attenuation_factor <= 0.0:
            raise ValueError(f"attenuation_factor must be > 0, got {attenuation_factor}")
        self.reference_level = float(reference_level)
        self.attenuation_factor = attenuation_factor

    def estimate(self, level: float) -> float:
        level = float(level)
        if not math.isfinite(level):
            raise ValueError(f"level must be finite, got {level}")
        exponent = (self.reference_level - level) / (2.0 * self.attenuation_factor)
        # 10**x overflows past ~308; cap so the result stays finite
        return 10.0 ** min(exponent, MAX_DISTANCE_EXPONENT)
