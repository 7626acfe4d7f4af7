from __future__ import annotations

import os
from typing import Optional

from sound_radar.config import PRINT_FRAME_EVERY_DEFAULT
from sound_radar.messages import RadarResult


class Emitter:
    """Console presentation of radar results.

    Prints an [INIT] line once, then one line per result, throttled to every
    N frames (env PRINT_FRAME_EVERY). The first 3 results are always printed.
    """
    def __init__(self, print_every: Optional[int] = None):
        if print_every is None:
            try:
                print_every = int(os.environ.get('PRINT_FRAME_EVERY', str(PRINT_FRAME_EVERY_DEFAULT)))
            except Exception:
                print_every = PRINT_FRAME_EVERY_DEFAULT
        self._print_every = max(1, int(print_every))
        self._print_count = 0
        self.last: Optional[RadarResult] = None

    def emit_init(self, sample_rate: int, frame_size: int, source_mode: str, tunables: Optional[dict] = None):
        parts = " ".join(f"{k}={v}" for k, v in (tunables or {}).items())
        print(f"[INIT] sr={int(sample_rate)} frame={int(frame_size)} source={str(source_mode).upper()} {parts}".rstrip())

    @staticmethod
    def format_result(result: RadarResult) -> str:
        state = "LOCK" if result.is_locking_on else "scan"
        return (
            f"[radar] frame={result.frame_idx} {state} level={result.level:.1f} "
            f"angle={result.angle_deg:.1f}deg distance={result.distance_m:.2f} meters"
        )

    def emit(self, result: RadarResult):
        self.last = result
        self._print_count += 1
        if self._print_count <= 3 or (self._print_count % self._print_every == 0):
            print(self.format_result(result))
