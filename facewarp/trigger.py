"""
Trigger policies deciding how strongly each frame is deformed.

Three modes share one engine:
  always_on: the configured intensity is applied to every face
  threshold: an external per-frame score is smoothed with an exponential
             moving average; the effect ramps in once it passes a threshold
  forced:    a fixed override intensity, ignoring the score

The EMA value is the only state carried between frames.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class TriggerKind(str, Enum):
    ALWAYS_ON = "always_on"
    THRESHOLD = "threshold"
    FORCED = "forced"


@dataclass(frozen=True)
class TriggerMode:
    """
    Trigger policy.

    Attributes:
        kind: Which policy to apply
        threshold: Smoothed score at which the effect starts (threshold mode)
        ramp_scale: Ramp slope above the threshold; the effect reaches full
                    strength at threshold + 1 / ramp_scale
        ema_alpha: Weight of the newest score in the moving average, (0, 1]
        forced_intensity: Intensity used in forced mode
    """
    kind: TriggerKind = TriggerKind.ALWAYS_ON
    threshold: float = 0.5
    ramp_scale: float = 4.0
    ema_alpha: float = 0.2
    forced_intensity: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "kind", TriggerKind(self.kind))
        if not 0.0 < self.ema_alpha <= 1.0:
            raise ValueError(f"ema_alpha must be in (0, 1], got {self.ema_alpha}")
        if self.ramp_scale <= 0:
            raise ValueError(f"ramp_scale must be positive, got {self.ramp_scale}")

    @classmethod
    def always_on(cls) -> "TriggerMode":
        return cls(TriggerKind.ALWAYS_ON)

    @classmethod
    def threshold_triggered(cls, threshold: float, ramp_scale: float, ema_alpha: float = 0.2) -> "TriggerMode":
        return cls(TriggerKind.THRESHOLD, threshold=threshold, ramp_scale=ramp_scale, ema_alpha=ema_alpha)

    @classmethod
    def forced(cls, intensity: float = 1.0) -> "TriggerMode":
        return cls(TriggerKind.FORCED, forced_intensity=intensity)


class Trigger:
    """Applies a TriggerMode frame by frame, holding the EMA state."""

    def __init__(self, mode: TriggerMode):
        self.mode = mode
        self.ema: Optional[float] = None

    def reset(self) -> None:
        self.ema = None

    def update(self, score: Optional[float]) -> Optional[float]:
        """
        Fold a new score into the moving average.

        A missing score counts as 0. The first score seeds the average.
        """
        value = 0.0 if score is None else float(score)
        if self.ema is None:
            self.ema = value
        else:
            a = self.mode.ema_alpha
            self.ema = a * value + (1.0 - a) * self.ema
        return self.ema

    def ramp(self) -> float:
        """Threshold-mode ramp in [0, 1] for the current average."""
        if self.ema is None:
            return 0.0
        r = (self.ema - self.mode.threshold) * self.mode.ramp_scale
        return min(max(r, 0.0), 1.0)

    def effective_intensity(self, intensity: float, score: Optional[float] = None) -> float:
        """
        Intensity to apply to this frame.

        Args:
            intensity: Configured intensity
            score: External per-frame score (threshold mode only)
        """
        kind = self.mode.kind
        if kind == TriggerKind.FORCED:
            return self.mode.forced_intensity
        if kind == TriggerKind.THRESHOLD:
            self.update(score)
            ramp = self.ramp()
            logger.debug("Trigger ema=%.3f ramp=%.3f", self.ema, ramp)
            return intensity * ramp
        return intensity
