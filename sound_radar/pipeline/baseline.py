from __future__ import annotations

from typing import Optional

from sound_radar.config import BASELINE_OFFSET
from sound_radar.messages import BaselineState


class BaselineCalibrator:
    """One-shot baseline with a fixed offset threshold.

    The first level seen by a stream becomes its ambient reference. After
    that, a level locks on when it exceeds baseline + offset. The baseline
    does not track later drift in ambient noise.
    """
    def __init__(self, offset: float = BASELINE_OFFSET):
        self.offset = float(offset)

    def threshold(self, state: BaselineState) -> Optional[float]:
        if not state.is_calibrated:
            return None
        return state.value + self.offset

    def update(self, state: BaselineState, level: float) -> bool:
        if not state.is_calibrated:
            state.value = float(level)
            state.is_calibrated = True
            return False
        return float(level) > state.value + self.offset
