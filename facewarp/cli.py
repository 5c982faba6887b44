"""
Command-line interface for facewarp.

This module provides the main entry point for the CLI tool.
"""

import logging
import sys
from typing import Optional

from .config import create_argument_parser, Config
from .engine import WarpEngine
from .landmarks import LandmarkIngest, MalformedLandmarkSet
from .utils import load_image, mirror_image, save_image


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for CLI.

    Args:
        argv: Command-line arguments (None = sys.argv)

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    # Handle --save-config
    if args.save_config:
        template = Config.generate_default_config_template()
        with open(args.save_config, 'w') as f:
            f.write(template)
        print(f"Default configuration saved to: {args.save_config}")
        print(f"Edit this file and use with: facewarp --config {args.save_config}")
        return 0

    try:
        config = Config.from_args(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print(f"\nUse --help for usage information or --save-config to generate a template.", file=sys.stderr)
        return 1

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    warp = config.warp
    if args.verbose:
        print("=" * 60)
        print("facewarp - Expression Warp")
        print("=" * 60)
        print(f"Input: {config.input_file}")
        print(f"Landmarks: {config.landmarks_file}")
        print(f"Output: {config.output_file}")
        print(f"Mode: {warp.mode} (intensity {warp.intensity:.2f}, trigger {warp.trigger.mode})")
        if warp.mode == "grid":
            print(f"Grid: {warp.grid_resolution[0]}x{warp.grid_resolution[1]}")
        print("=" * 60)

    try:
        if args.verbose:
            print("\n[1/3] Loading inputs...")

        image = load_image(config.input_file)
        height, width = image.shape[:2]
        try:
            landmarks = LandmarkIngest.from_json(config.landmarks_file, image_size=(width, height))
        except MalformedLandmarkSet as e:
            print(f"Warning: Malformed landmarks, output is the unmodified image: {e}", file=sys.stderr)
            landmarks = None

        if args.verbose:
            print(f"  Image: {width}x{height}")
            print(f"  Landmarks: {landmarks if landmarks is not None else 'no face'}")

        if args.verbose:
            print("\n[2/3] Warping...")

        engine = WarpEngine(warp)
        engine.reserve(image.shape, image.dtype)
        result = engine.process(image, landmarks, score=args.score)

        if args.verbose:
            print(f"  State: {engine.state.value}")
            print(f"  Triangles: {engine.last_stats.painted} painted, "
                  f"{engine.last_stats.degenerate} degenerate")

        if config.mirror:
            result = mirror_image(result)

        if args.verbose:
            print("\n[3/3] Saving...")

        saved = save_image(result, config.output_file)

        if args.verbose:
            print(f"  Output → {saved}")
            print("\n" + "=" * 60)
            print("✓ Complete!")
            print("=" * 60)

        return 0

    except FileNotFoundError as e:
        print(f"Error: File not found: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: Invalid input: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
