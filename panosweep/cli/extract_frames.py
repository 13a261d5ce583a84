"""CLI for extracting a flat camera sweep from an equirectangular panorama."""

import argparse
import json
import logging
import math
import sys
from pathlib import Path

from panosweep import ExtractionConfig, FrameGenerator, SourceImage
from panosweep.core.errors import FatalError

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 3

# flag -> (config attribute, converter); angles on the command line are degrees
_OVERRIDES = {
    "frame_count": ("frame_count", int),
    "width": ("output_width", int),
    "height": ("output_height", int),
    "workers": ("concurrency", int),
    "v_fov": ("v_fov", math.radians),
    "interpolation": ("interpolation", str),
    "backend": ("backend", str),
    "format": ("image_format", str),
    "quality": ("jpeg_quality", int),
}
_PATH_OVERRIDES = {
    "start_yaw": "start_yaw",
    "sweep": "angular_velocity",
    "pitch": "pitch",
    "h_fov": "h_fov",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract rectilinear frames sweeping through a 360° panorama")
    parser.add_argument("input", type=Path, help="Equirectangular source image (2:1)")
    parser.add_argument("-o", "--output", type=Path, required=True, help="Directory for extracted frames")
    parser.add_argument("-c", "--config", type=Path, help="YAML extraction config (angles in radians)")
    parser.add_argument("-n", "--frame-count", type=int, help="Number of frames to extract (default 360)")
    parser.add_argument("--width", type=int, help="Output frame width (default: derived from source and --h-fov)")
    parser.add_argument("--height", type=int, help="Output frame height (default: derived from source and --v-fov)")
    parser.add_argument("-j", "--workers", type=int, help="Number of parallel workers (default: CPU count)")

    parser.add_argument("--start-yaw", type=float, help="Starting yaw in degrees (default -180)")
    parser.add_argument("--sweep", type=float, help="Yaw swept over the whole run in degrees (default 360)")
    parser.add_argument("--pitch", type=float, help="Camera pitch in degrees (default 0)")
    parser.add_argument("--h-fov", type=float, help="Horizontal field of view in degrees (default 60)")
    parser.add_argument("--v-fov", type=float, help="Vertical field of view in degrees, only used to size output (default 45)")

    parser.add_argument("--interpolation", choices=["bilinear", "nearest"], help="Sampling method")
    parser.add_argument("--backend", choices=["numpy", "torch"], help="Projection backend")
    parser.add_argument("--format", choices=["png", "jpg"], help="Frame image format")
    parser.add_argument("--quality", type=int, help="JPEG quality")

    parser.add_argument("--skip-existing", action="store_true", help="Keep frames that already exist in the output")
    parser.add_argument("--summary-json", type=Path, help="Write the run summary as JSON")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def load_config(args: argparse.Namespace) -> ExtractionConfig:
    """Config file values, overridden by any flag given on the command line."""
    cfg = ExtractionConfig.from_yaml(args.config) if args.config else ExtractionConfig()
    for flag, (attr, convert) in _OVERRIDES.items():
        value = getattr(args, flag)
        if value is not None:
            setattr(cfg, attr, convert(value))
    for flag, attr in _PATH_OVERRIDES.items():
        value = getattr(args, flag)
        if value is not None:
            setattr(cfg.path, attr, math.radians(value))
    return cfg.validate()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        cfg = load_config(args)
        source = SourceImage.load(args.input)
        gen = FrameGenerator(source, args.output, cfg)
        print(f"Extracting {cfg.frame_count} frames ({gen.output_width}x{gen.output_height}) from {args.input}")
        results = gen.generate(skip_existing=args.skip_existing, progress=not args.no_progress)
    except FatalError as e:
        print(f"Error [{e.kind or 'Fatal'}]: {e}", file=sys.stderr)
        result = getattr(e, "result", None)
        if result is not None and args.summary_json:
            _write_summary(args.summary_json, result.to_dict())
        return EXIT_FATAL

    print(f"\nExtraction complete:")
    print(f"  Total frames: {results.frame_count}")
    print(f"  Attempted: {results.attempted}")
    print(f"  Succeeded: {results.succeeded}")
    print(f"  Skipped: {results.skipped}")
    print(f"  Failed: {len(results.failures)}")
    if results.cancelled:
        print("  Cancelled before all frames were claimed")
    print(f"  Frames: {gen.sink.directory / gen.sink.pattern}")

    if results.failures:
        print("\nFailures:")
        for failure in results.failures[:10]:
            print(f"  {failure.frame_index}: [{failure.kind}] {failure.message}")
        if len(results.failures) > 10:
            print(f"  ... and {len(results.failures) - 10} more")

    if args.summary_json:
        _write_summary(args.summary_json, results.to_dict())

    return EXIT_OK if results.ok else EXIT_PARTIAL


def _write_summary(path: Path, summary: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(summary, f, indent=2)


if __name__ == "__main__":
    sys.exit(main())
