"""
Central configuration for the sound radar pipeline.

Exports constants used across the pipeline, the emitter and rt_main.
"""

# --- Core sampling and frame configuration ---
SAMPLE_RATE: int = 48000
FRAME_SIZE: int = 1024          # ~21 ms @ 48 kHz

# --- Level computation ---
LEVEL_GAIN: float = 100.0        # level = LEVEL_GAIN * log10(rms); not calibrated SPL
LEVEL_FLOOR: float = -1000.0     # returned for silent / degenerate frames

# --- Detection ---
BASELINE_OFFSET: float = 5.0     # locking on when level > baseline + offset

# --- Angle smoothing ---
EMA_ALPHA: float = 0.2
ANGLE_GAIN: float = 2.0          # raw angle (deg) = level * ANGLE_GAIN

# --- Distance model ---
REFERENCE_LEVEL: float = 1.0     # level at the reference distance
ATTENUATION_FACTOR: float = 100.0
MAX_DISTANCE_EXPONENT: float = 300.0  # keeps 10**x finite

# --- Hand-off queues ---
FRAME_QUEUE_SIZE: int = 8        # frames buffered between delivery and worker
RESULT_QUEUE_SIZE: int = 32      # results buffered for the consumer

# --- Console pacing ---
PRINT_FRAME_EVERY_DEFAULT: int = 15
