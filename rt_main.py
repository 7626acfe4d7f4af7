from __future__ import annotations

import argparse
import time

from sound_radar.config import (
    SAMPLE_RATE,
    FRAME_SIZE,
    LEVEL_GAIN,
    BASELINE_OFFSET,
    EMA_ALPHA,
    REFERENCE_LEVEL,
    ATTENUATION_FACTOR,
)
from sound_radar.pipeline.audio_source import AudioSource, AudioSourceError
from sound_radar.pipeline.baseline import BaselineCalibrator
from sound_radar.pipeline.coordinator import RadarPipeline
from sound_radar.pipeline.distance import DistanceEstimator
from sound_radar.pipeline.emitter import Emitter
from sound_radar.pipeline.smoothing import AngleSmoother


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Real-time sound radar: lock-on state, heuristic angle and distance from ambient audio")
    p.add_argument("--source", choices=["file", "stream"], default="stream")
    p.add_argument("--audio-file", type=str, help="Path to WAV/FLAC file (for file source)")
    p.add_argument("--channels", type=str, default="", help="Comma-separated channel indices; channel 0 of the selection drives the level")
    p.add_argument("--device", type=str, default=None, help="Input device index or name for stream source (auto-select if omitted)")
    p.add_argument("--list-devices", action="store_true", help="List audio devices and exit")
    p.add_argument("--frame-size", type=int, default=FRAME_SIZE)
    p.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)
    p.add_argument("--offset", type=float, default=BASELINE_OFFSET, help="Lock-on threshold above the baseline level")
    p.add_argument("--alpha", type=float, default=EMA_ALPHA, help="EMA factor for the angle indicator, in (0, 1]")
    p.add_argument("--reference-level", type=float, default=REFERENCE_LEVEL)
    p.add_argument("--attenuation", type=float, default=ATTENUATION_FACTOR)
    p.add_argument("--gain", type=float, default=LEVEL_GAIN, help="Level = gain * log10(rms)")
    p.add_argument("--max-frames", type=int, default=None)
    p.add_argument("--duration", type=float, default=None, help="Stop a live run after this many seconds")
    p.add_argument("--offline", action="store_true", help="Process a file as fast as possible without the threaded pipeline")
    p.add_argument("--print-every", type=int, default=None, help="Print every Nth result (env PRINT_FRAME_EVERY)")
    return p


def _parse_device(raw):
    if raw is None or len(str(raw).strip()) == 0:
        return None
    # allow numeric index or name string
    try:
        return int(raw)
    except ValueError:
        return str(raw)


def main(argv=None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    if args.list_devices:
        try:
            devices = AudioSource.list_devices()
        except AudioSourceError as e:
            print(f"Could not query audio devices: {e}")
            return 1
        print("Available audio devices:")
        for i, d in enumerate(devices):
            name = d.get('name', '')
            print(f"  {i}: {name} (in: {d.get('max_input_channels', 0)}, out: {d.get('max_output_channels', 0)})")
        return 0

    if args.source == "file" and not args.audio_file:
        p.error("--audio-file is required for file source")
    if args.offline and args.source != "file":
        p.error("--offline requires --source file")

    channels = list(map(int, args.channels.split(','))) if args.channels.strip() else None

    try:
        source = AudioSource(
            backend=args.source,
            file_path=args.audio_file,
            channels=channels,
            device=_parse_device(args.device),
            frame_size=args.frame_size,
            sample_rate=args.sample_rate,
        )
        pipeline = RadarPipeline(
            source=source,
            calibrator=BaselineCalibrator(offset=args.offset),
            smoother=AngleSmoother(alpha=args.alpha),
            estimator=DistanceEstimator(reference_level=args.reference_level, attenuation_factor=args.attenuation),
            level_gain=args.gain,
        )
    except ValueError as e:
        p.error(str(e))

    emitter = Emitter(print_every=args.print_every)
    emitter.emit_init(
        sample_rate=args.sample_rate,
        frame_size=args.frame_size,
        source_mode="WAV" if args.source == "file" else "STREAM",
        tunables={"offset": args.offset, "alpha": args.alpha, "ref": args.reference_level, "atten": args.attenuation, "gain": args.gain},
    )

    if args.offline:
        try:
            for n, result in enumerate(pipeline.run(source.frames()), start=1):
                emitter.emit(result)
                if args.max_frames is not None and n >= args.max_frames:
                    break
        except AudioSourceError as e:
            print(f"[radar][error] {e}")
            return 1
        return 0

    try:
        pipeline.start()
    except AudioSourceError as e:
        print(f"[radar][error] {e}")
        return 1

    n = 0
    deadline = (time.monotonic() + args.duration) if args.duration is not None else None
    try:
        while True:
            if deadline is not None and time.monotonic() >= deadline:
                break
            result = pipeline.get_result(timeout=0.25)
            if result is None:
                # File replay exhausted and the worker has gone quiet
                if source.finished:
                    break
                continue
            emitter.emit(result)
            n += 1
            if args.max_frames is not None and n >= args.max_frames:
                break
    except KeyboardInterrupt:
        pass
    finally:
        pipeline.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
