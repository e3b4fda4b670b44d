"""
CPU point renderer for the particle field (OpenCV + numpy).

Mirrors what a GPU point-sprite shader would do per vertex: blend toward the
target, push outward by the expansion amount, add a small time-based wobble,
apply the field's scale/offset, then project through a perspective camera.
Points are splatted additively and given a soft glow.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np


@dataclass
class RenderConfig:
    camera_distance: float = 30.0
    fov_degrees: float = 75.0
    near_plane: float = 0.1

    # Per-point outward push: expansion * (base + seed * random)
    expansion_base: float = 30.0
    expansion_random: float = 40.0

    jitter_amplitude: float = 0.1

    # Point size attenuation: size * (reference / depth)
    size_reference: float = 300.0

    glow_sigma: float = 2.5
    glow_strength: float = 0.6
    exposure: float = 0.5


class PointRenderer:
    """Rasterizes a ParticleField into a BGR image."""

    def __init__(self, width: int, height: int, config: RenderConfig = None):
        self.config = config or RenderConfig()
        self.resize(width, height)

    def resize(self, width: int, height: int):
        self.width = int(width)
        self.height = int(height)
        half_fov = math.radians(self.config.fov_degrees) / 2
        self.focal = (self.height / 2) / math.tan(half_fov)

    def project(self, field) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Apply the per-point transforms.
        Returns (screen_x, screen_y, splat_weight) for visible points only.
        """
        cfg = self.config
        params = field.params
        seeds = field.randoms

        base = field.current_points
        if params.blend:
            base = base + (field.target_points - base) * params.blend

        norms = np.linalg.norm(base, axis=1, keepdims=True)
        directions = base / np.maximum(norms, 1e-6)
        push = params.expansion * (cfg.expansion_base + seeds * cfg.expansion_random)
        pos = base + directions * push[:, None]

        phase = seeds * 10.0
        pos[:, 0] += np.sin(params.time * 2.0 + phase) * cfg.jitter_amplitude
        pos[:, 1] += np.cos(params.time * 1.5 + phase) * cfg.jitter_amplitude

        pos *= params.scale
        pos[:, 0] += params.offset[0]
        pos[:, 1] += params.offset[1]

        depth = cfg.camera_distance - pos[:, 2]
        in_front = depth > cfg.near_plane
        depth = np.where(in_front, depth, 1.0)

        sx = self.width / 2 + pos[:, 0] / depth * self.focal
        sy = self.height / 2 - pos[:, 1] / depth * self.focal

        size = params.point_size * (cfg.size_reference / depth) * (0.8 + seeds * 0.5)
        visible = (in_front & (sx >= 0) & (sx < self.width) &
                   (sy >= 0) & (sy < self.height))

        return sx[visible], sy[visible], (size[visible] ** 2)

    def render(self, field) -> np.ndarray:
        cfg = self.config
        sx, sy, weight = self.project(field)

        flat_idx = sy.astype(np.int64) * self.width + sx.astype(np.int64)
        accum = np.bincount(flat_idx, weights=weight, minlength=self.width * self.height)
        accum = accum.reshape(self.height, self.width).astype(np.float32)

        glow = cv2.GaussianBlur(accum, (0, 0), cfg.glow_sigma)
        energy = accum + glow * cfg.glow_strength * cfg.glow_sigma ** 2
        # Additive blending saturates smoothly
        intensity = 1.0 - np.exp(-energy * cfg.exposure)

        r, g, b = field.params.color
        bgr = np.array([b, g, r], dtype=np.float32) * 255.0
        return (intensity[..., None] * bgr).astype(np.uint8)
