"""
Particle field: the live point buffers and the render parameters driven by
gesture input.

Points are stored column-wise in flat float32 buffers (positions and targets
of length 3 * N, seeds of length N) so the whole cloud updates in a few
vectorized numpy operations per tick.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from shapes import ShapeType, generate

logger = logging.getLogger(__name__)

ColorLike = Union[str, Sequence[float]]


@dataclass
class FieldConfig:
    """Empirically tuned constants for morphing and gesture response."""
    # Fraction of the remaining distance to the target closed per advance()
    morph_rate: float = 0.05

    # Expansion from hand tension
    expansion_dead_zone: float = 0.2
    expansion_rescale: float = 1.25

    # Shrink from a closed hand
    closed_dead_zone: float = 0.3
    max_shrink: float = 0.5

    # Exponential smoothing per gesture update
    follow_rate: float = 0.1
    recenter_rate: float = 0.05

    # World-space span covered by the pointing position
    offset_span_x: float = 40.0
    offset_span_y: float = 30.0

    point_size: float = 0.1
    initial_extent: float = 25.0


@dataclass
class RenderParameters:
    """Uniforms handed to the render backend every frame."""
    time: float = 0.0
    blend: float = 0.0
    point_size: float = 0.1
    expansion: float = 0.0
    color: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    scale: float = 1.0
    offset: np.ndarray = field(default_factory=lambda: np.zeros(2, dtype=np.float64))


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_color(color: ColorLike) -> Tuple[float, float, float]:
    """Convert '#rrggbb' or an RGB triple (0-1 floats) to an RGB float tuple."""
    if isinstance(color, str):
        value = color.strip().lstrip("#")
        if len(value) != 6:
            raise ValueError(f"Invalid color '{color}' (expected #rrggbb)")
        try:
            r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
        except ValueError:
            raise ValueError(f"Invalid color '{color}' (expected #rrggbb)")
        return (r / 255.0, g / 255.0, b / 255.0)

    rgb = tuple(float(c) for c in color)
    if len(rgb) != 3:
        raise ValueError(f"Invalid color {color!r} (expected 3 components)")
    return tuple(_clamp01(c) for c in rgb)


def base_scale_for_viewport(width: int) -> float:
    """Shrink shapes on narrow (mobile-sized) viewports."""
    return 0.5 if width < 600 else 1.0


class ParticleField:
    """Owns the particle buffers and blends them toward the active shape."""

    def __init__(self, count: int = 40000, base_scale: float = 1.0,
                 config: Optional[FieldConfig] = None,
                 rng: Optional[np.random.Generator] = None,
                 initial_shape: ShapeType = ShapeType.FLOWER):
        if count < 1:
            raise ValueError(f"Particle count must be >= 1, got {count}")

        self.count = count
        self.base_scale = base_scale
        self.config = config or FieldConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

        extent = self.config.initial_extent * base_scale
        self.positions = self.rng.uniform(-extent, extent, size=count * 3).astype(np.float32)
        self.targets = self.positions.copy()
        self.randoms = self.rng.random(count).astype(np.float32)
        self._scratch = np.empty_like(self.positions)

        self.params = RenderParameters(point_size=self.config.point_size)

        self.current_shape: ShapeType = ShapeType.RANDOM
        self.current_text = ""
        self.positions_dirty = True
        self.target_dirty = True

        self.set_shape(initial_shape)

    @property
    def current_points(self) -> np.ndarray:
        """(N, 3) view of the live positions."""
        return self.positions.reshape(self.count, 3)

    @property
    def target_points(self) -> np.ndarray:
        """(N, 3) view of the target positions."""
        return self.targets.reshape(self.count, 3)

    def set_shape(self, shape, text: str = ""):
        """Replace the target buffer; positions chase it on later advance() calls."""
        shape = ShapeType.parse(shape)
        self.targets[:] = generate(shape, self.count, self.base_scale,
                                   text=text, rng=self.rng)
        self.current_shape = shape
        self.current_text = text if shape is ShapeType.TEXT else ""
        self.target_dirty = True

        if shape is ShapeType.TEXT:
            logger.info(f"Shape set to text {text!r}")
        else:
            logger.info(f"Shape set to {shape.value}")

    def set_color(self, color: ColorLike):
        self.params.color = parse_color(color)

    def advance(self, now: float):
        """
        Move every point a fixed fraction of the way to its target.

        The rate is constant per call, so convergence speed follows the
        display frame rate.
        """
        self.params.time = now
        np.subtract(self.targets, self.positions, out=self._scratch)
        self._scratch *= self.config.morph_rate
        self.positions += self._scratch
        self.positions_dirty = True

    def apply_gesture_signal(self, signal):
        """Ease expansion, scale and offset toward the values implied by a gesture."""
        cfg = self.config
        params = self.params
        pointing = signal.pointing_active

        tension = max(0.0, signal.openness - cfg.expansion_dead_zone)
        expansion_target = 0.0 if pointing else _clamp01(tension * cfg.expansion_rescale)
        params.expansion += (expansion_target - params.expansion) * cfg.follow_rate

        closed = 0.0 if pointing else _clamp01(signal.closedness - cfg.closed_dead_zone)
        scale_target = 1.0 - closed * cfg.max_shrink
        params.scale += (scale_target - params.scale) * cfg.follow_rate

        if pointing:
            target_x = (signal.pointing_x - 0.5) * cfg.offset_span_x
            # Source y grows downward
            target_y = -(signal.pointing_y - 0.5) * cfg.offset_span_y
            rate = cfg.follow_rate
        else:
            target_x, target_y = 0.0, 0.0
            rate = cfg.recenter_rate

        params.offset[0] += (target_x - params.offset[0]) * rate
        params.offset[1] += (target_y - params.offset[1]) * rate

    def consume_dirty(self) -> Tuple[bool, bool]:
        """Return (positions_dirty, target_dirty) and clear both flags."""
        dirty = (self.positions_dirty, self.target_dirty)
        self.positions_dirty = False
        self.target_dirty = False
        return dirty
