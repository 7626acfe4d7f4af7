from __future__ import annotations

from sound_radar.config import EMA_ALPHA, ANGLE_GAIN


class AngleSmoother:
    """Exponential moving average over a loudness-derived display angle.

    raw_angle = level * angle_gain (degrees). This is a visual indicator that
    moves with loudness; it is not a direction of arrival and must not be
    read as one.
    """
    def __init__(self, alpha: float = EMA_ALPHA, angle_gain: float = ANGLE_GAIN):
        alpha = float(alpha)
        if not (0.0 < alpha <= 1.0):
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.angle_gain = float(angle_gain)

    def raw_angle(self, level: float) -> float:
        return float(level) * self.angle_gain

    def update(self, previous: float, level: float) -> float:
        return previous * (1.0 - self.alpha) + self.raw_angle(level) * self.alpha
