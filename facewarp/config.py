"""
Configuration management for facewarp.

Handles:
- Warp engine configuration (dataclasses with validation)
- YAML config file loading and saving
- Command-line argument parsing and overrides
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Dict, Any
import argparse

from .landmarks import DETECTOR_LAYOUTS
from .trigger import TriggerKind, TriggerMode

WARP_MODES = ("grid", "patches")
FEATHER_STYLES = ("blur", "ramp")


@dataclass
class FeatherConfig:
    """Patch feather mask configuration."""
    style: Optional[str] = None  # None = blur if available, else ramp
    min_margin: float = 16.0
    ipd_factor: float = 0.2


@dataclass
class TriggerConfig:
    """Trigger policy configuration."""
    mode: str = "always_on"  # "always_on", "threshold", "forced"
    threshold: float = 0.5
    ramp_scale: float = 4.0
    ema_alpha: float = 0.2
    forced_intensity: float = 1.0

    def to_mode(self) -> TriggerMode:
        return TriggerMode(
            kind=TriggerKind(self.mode),
            threshold=self.threshold,
            ramp_scale=self.ramp_scale,
            ema_alpha=self.ema_alpha,
            forced_intensity=self.forced_intensity
        )


@dataclass
class WarpConfig:
    """Warp engine configuration."""
    intensity: float = 0.85
    mode: str = "grid"  # "grid" or "patches"
    detector: str = "mediapipe"
    grid_resolution: Tuple[int, int] = (12, 12)  # (cols, rows)
    padding_fraction: float = 0.15
    sigma_factor: float = 0.55
    source_scale: float = 1.0  # <1 warps a downscaled copy of the frame
    feather: FeatherConfig = field(default_factory=FeatherConfig)
    trigger: TriggerConfig = field(default_factory=TriggerConfig)

    def validate(self) -> None:
        """
        Check option ranges.

        Raises:
            ValueError: On the first invalid option
        """
        if not 0.0 <= self.intensity <= 1.0:
            raise ValueError(f"intensity must be in [0, 1], got {self.intensity}")
        if self.mode not in WARP_MODES:
            raise ValueError(f"mode must be one of {WARP_MODES}, got '{self.mode}'")
        if self.detector not in DETECTOR_LAYOUTS:
            raise ValueError(
                f"detector must be one of {tuple(sorted(DETECTOR_LAYOUTS))}, got '{self.detector}'"
            )
        cols, rows = self.grid_resolution
        if cols < 1 or rows < 1:
            raise ValueError(f"grid_resolution must be at least 1x1, got {cols}x{rows}")
        if self.padding_fraction < 0:
            raise ValueError(f"padding_fraction must be >= 0, got {self.padding_fraction}")
        if self.sigma_factor <= 0:
            raise ValueError(f"sigma_factor must be positive, got {self.sigma_factor}")
        if not 0.0 < self.source_scale <= 1.0:
            raise ValueError(f"source_scale must be in (0, 1], got {self.source_scale}")
        if self.feather.style is not None and self.feather.style not in FEATHER_STYLES:
            raise ValueError(
                f"feather.style must be one of {FEATHER_STYLES} or null, got '{self.feather.style}'"
            )
        if self.trigger.mode not in [k.value for k in TriggerKind]:
            raise ValueError(
                f"trigger.mode must be one of {[k.value for k in TriggerKind]}, got '{self.trigger.mode}'"
            )
        # TriggerMode checks its own numeric ranges
        self.trigger.to_mode()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WarpConfig":
        """Build from a (possibly partial) dictionary, e.g. parsed YAML."""
        feather_data = data.get('feather') or {}
        feather = FeatherConfig(
            style=feather_data.get('style'),
            min_margin=feather_data.get('min_margin', 16.0),
            ipd_factor=feather_data.get('ipd_factor', 0.2)
        )

        trigger_data = data.get('trigger') or {}
        trigger = TriggerConfig(
            mode=trigger_data.get('mode', 'always_on'),
            threshold=trigger_data.get('threshold', 0.5),
            ramp_scale=trigger_data.get('ramp_scale', 4.0),
            ema_alpha=trigger_data.get('ema_alpha', 0.2),
            forced_intensity=trigger_data.get('forced_intensity', 1.0)
        )

        return cls(
            intensity=data.get('intensity', 0.85),
            mode=data.get('mode', 'grid'),
            detector=data.get('detector', 'mediapipe'),
            grid_resolution=tuple(data.get('grid_resolution', [12, 12])),
            padding_fraction=data.get('padding_fraction', 0.15),
            sigma_factor=data.get('sigma_factor', 0.55),
            source_scale=data.get('source_scale', 1.0),
            feather=feather,
            trigger=trigger
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'intensity': self.intensity,
            'mode': self.mode,
            'detector': self.detector,
            'grid_resolution': list(self.grid_resolution),
            'padding_fraction': self.padding_fraction,
            'sigma_factor': self.sigma_factor,
            'source_scale': self.source_scale,
            'feather': {
                'style': self.feather.style,
                'min_margin': self.feather.min_margin,
                'ipd_factor': self.feather.ipd_factor
            },
            'trigger': {
                'mode': self.trigger.mode,
                'threshold': self.trigger.threshold,
                'ramp_scale': self.trigger.ramp_scale,
                'ema_alpha': self.trigger.ema_alpha,
                'forced_intensity': self.trigger.forced_intensity
            }
        }


@dataclass
class Config:
    """Complete command-line configuration."""
    input_file: str
    landmarks_file: str = ""
    output_file: str = "output.png"
    mirror: bool = False  # flip the result horizontally for display
    warp: WarpConfig = field(default_factory=WarpConfig)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Config":
        """
        Create config from parsed command-line arguments.

        Loads config file if specified, then applies command-line overrides.

        Args:
            args: Parsed arguments from argparse

        Returns:
            Config instance

        Raises:
            ValueError: If required inputs are missing or an option is invalid
        """
        if args.config:
            config = cls.from_yaml(args.config, input_file_override=args.input)
        else:
            if not args.input:
                raise ValueError("input image must be specified (positional argument or in config file)")
            config = cls(input_file=args.input)

        if args.input:
            config.input_file = args.input
        if args.landmarks:
            config.landmarks_file = args.landmarks
        if args.output:
            config.output_file = args.output
        if args.mirror:
            config.mirror = True

        if not config.landmarks_file:
            raise ValueError("--landmarks must be specified (or in config file)")

        warp = config.warp
        if args.intensity is not None:
            warp.intensity = args.intensity
        if args.mode:
            warp.mode = args.mode
        if args.detector:
            warp.detector = args.detector
        if args.grid:
            try:
                cols, rows = args.grid.lower().split('x')
                warp.grid_resolution = (int(cols), int(rows))
            except ValueError:
                raise ValueError(f"Invalid grid format: {args.grid}. Use COLSxROWS (e.g., 12x12)")
        if args.padding is not None:
            warp.padding_fraction = args.padding
        if args.sigma_factor is not None:
            warp.sigma_factor = args.sigma_factor
        if args.source_scale is not None:
            warp.source_scale = args.source_scale
        if args.feather_style:
            warp.feather.style = args.feather_style
        if args.trigger:
            warp.trigger.mode = args.trigger
        if args.threshold is not None:
            warp.trigger.threshold = args.threshold
        if args.ramp_scale is not None:
            warp.trigger.ramp_scale = args.ramp_scale

        warp.validate()
        return config

    @classmethod
    def from_yaml(cls, filepath: str, input_file_override: Optional[str] = None) -> "Config":
        """
        Load config from YAML file.

        Args:
            filepath: Path to YAML config file
            input_file_override: Override input file from command line

        Returns:
            Config instance
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}

        input_file = input_file_override or data.get('input_file', '')
        if not input_file:
            raise ValueError("input_file must be specified in config or command line")

        warp = WarpConfig.from_dict(data.get('warp') or {})
        warp.validate()

        return cls(
            input_file=input_file,
            landmarks_file=data.get('landmarks_file', ''),
            output_file=data.get('output_file', 'output.png'),
            mirror=data.get('mirror', False),
            warp=warp
        )

    def to_yaml(self, filepath: str) -> None:
        """
        Save config to YAML file.

        Args:
            filepath: Path to save YAML config file
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        data = {
            'input_file': self.input_file,
            'landmarks_file': self.landmarks_file,
            'output_file': self.output_file,
            'mirror': self.mirror,
            'warp': self.warp.to_dict()
        }

        with open(filepath, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @staticmethod
    def generate_default_config_template() -> str:
        """
        Generate a default configuration template with comments.

        Returns:
            YAML string with comments explaining each option
        """
        return """# facewarp Configuration File
#
# Command-line arguments override values specified here.

# Input image (required)
input_file: "path/to/frame.png"

# Landmarks JSON: {"source": "mediapipe", "landmarks": [[x, y, z], ...], "image_size": [w, h]}
# null or empty landmarks mean no face: the image passes through unchanged
landmarks_file: "path/to/landmarks.json"

# Output image
output_file: "output.png"

# Flip the result horizontally (selfie view). Warping always happens
# in unmirrored detector space.
mirror: false

warp:
  # Deformation strength 0-1 (0 = identity, 1 = full designed deformation)
  intensity: 0.85

  # grid: smooth field over a tessellated face region
  # patches: independent mouth, brow and eyelid patches with feathered blending
  mode: "grid"

  # Landmark layout: mediapipe (468/478 points) or clm (71 points)
  detector: "mediapipe"

  # Grid cells [cols, rows]; finer grids follow the field more closely but cost more
  grid_resolution: [12, 12]

  # Face bounding box padding as a fraction of its size, per side
  padding_fraction: 0.15

  # Gaussian falloff radius as a fraction of the inter-eye distance
  sigma_factor: 0.55

  # Warp a downscaled copy of the frame (0-1]; 1 = full resolution
  source_scale: 1.0

  # Patch mode feathering
  feather:
    # blur, ramp, or null to use blur when available
    style: null
    # Feather width: max(min_margin, ipd_factor * inter-eye distance) pixels
    min_margin: 16.0
    ipd_factor: 0.2

  # When to apply the effect
  trigger:
    # always_on: apply intensity to every face
    # threshold: ramp in when the smoothed external score passes threshold
    # forced: always apply forced_intensity
    mode: "always_on"
    threshold: 0.5
    ramp_scale: 4.0
    ema_alpha: 0.2
    forced_intensity: 1.0
"""


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create command-line argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="facewarp",
        description="Warp the face in an image toward a sad expression using detected landmarks",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        epilog="Configuration file (YAML) can be used to set all options. Command-line arguments override config file values."
    )

    parser.add_argument(
        "--config", "-c",
        help="Path to YAML configuration file"
    )

    parser.add_argument(
        "input",
        nargs='?',
        help="Path to input image"
    )

    parser.add_argument(
        "--landmarks", "-l",
        help="Path to landmarks JSON file"
    )

    parser.add_argument(
        "--output", "-o",
        help="Path to output image"
    )

    parser.add_argument(
        "--save-config",
        metavar="PATH",
        help="Save default configuration to YAML file and exit"
    )

    parser.add_argument(
        "--mirror",
        action="store_true",
        help="Flip the result horizontally (selfie view)"
    )

    warp_group = parser.add_argument_group("Warp Options")
    warp_group.add_argument(
        "--intensity", "-k",
        type=float,
        help="Deformation strength 0-1"
    )
    warp_group.add_argument(
        "--mode",
        choices=list(WARP_MODES),
        help="Warp mode"
    )
    warp_group.add_argument(
        "--detector",
        choices=sorted(DETECTOR_LAYOUTS),
        help="Landmark layout"
    )
    warp_group.add_argument(
        "--grid",
        type=str,
        metavar="COLSxROWS",
        help="Grid resolution (e.g., 12x12)"
    )
    warp_group.add_argument(
        "--padding",
        type=float,
        metavar="FRACTION",
        help="Face bounding box padding per side"
    )
    warp_group.add_argument(
        "--sigma-factor",
        type=float,
        help="Gaussian falloff radius relative to inter-eye distance"
    )
    warp_group.add_argument(
        "--source-scale",
        type=float,
        help="Warp a downscaled copy of the frame (0-1]"
    )
    warp_group.add_argument(
        "--feather-style",
        choices=list(FEATHER_STYLES),
        help="Patch feather mask style"
    )

    trigger_group = parser.add_argument_group("Trigger Options")
    trigger_group.add_argument(
        "--trigger",
        choices=[k.value for k in TriggerKind],
        help="Trigger mode"
    )
    trigger_group.add_argument(
        "--score",
        type=float,
        help="External expression score for threshold mode"
    )
    trigger_group.add_argument(
        "--threshold",
        type=float,
        help="Score threshold (threshold mode)"
    )
    trigger_group.add_argument(
        "--ramp-scale",
        type=float,
        help="Ramp slope above the threshold (threshold mode)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    return parser
