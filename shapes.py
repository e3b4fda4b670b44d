"""
Procedural shape library for the particle cloud.

Every generator fills a flat float32 buffer of 3 * count coordinates
(x0, y0, z0, x1, y1, z1, ...) and scales it by the viewport base scale.
"""

import logging
from enum import Enum
from typing import Callable, Dict, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

RANDOM_EXTENT = 25.0

# Offscreen canvas used to rasterize text shapes
TEXT_CANVAS_WIDTH = 200
TEXT_CANVAS_HEIGHT = 100
TEXT_WORLD_WIDTH = 40.0
TEXT_WORLD_HEIGHT = 20.0
TEXT_DEPTH = 2.0


class ShapeType(Enum):
    """Shapes the particle field can morph into."""
    HEART = "heart"
    FLOWER = "flower"
    SATURN = "saturn"
    BUDDHA = "buddha"
    FIREWORKS = "fireworks"
    TEXT = "text"
    RANDOM = "random"

    @classmethod
    def parse(cls, value) -> "ShapeType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            names = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown shape '{value}' (expected one of: {names})")


def _sphere_directions(rng: np.random.Generator, n: int) -> np.ndarray:
    """Uniform unit vectors using the inverse-CDF polar angle."""
    theta = rng.random(n) * 2 * np.pi
    phi = np.arccos(2 * rng.random(n) - 1)
    return np.stack([
        np.sin(phi) * np.cos(theta),
        np.sin(phi) * np.sin(theta),
        np.cos(phi),
    ], axis=1)


def generate_random(count: int, rng: np.random.Generator) -> np.ndarray:
    return rng.uniform(-RANDOM_EXTENT, RANDOM_EXTENT, size=(count, 3))


def generate_heart(count: int, rng: np.random.Generator) -> np.ndarray:
    phi = rng.random(count) * 2 * np.pi
    x = 16 * np.sin(phi) ** 3
    y = 13 * np.cos(phi) - 5 * np.cos(2 * phi) - 2 * np.cos(3 * phi) - np.cos(4 * phi)
    z = rng.uniform(-5.0, 5.0, size=count)
    return np.stack([x * 0.5, y * 0.5, z], axis=1)


def generate_flower(count: int, rng: np.random.Generator) -> np.ndarray:
    u = rng.random(count) * 2 * np.pi
    v = rng.random(count) * np.pi
    # 5 petals
    r = 10 * (1 + 0.5 * np.sin(5 * u) * np.sin(v))
    return np.stack([
        r * np.sin(v) * np.cos(u),
        r * np.sin(v) * np.sin(u),
        r * np.cos(v),
    ], axis=1)


def generate_saturn(count: int, rng: np.random.Generator,
                    tilt: float = 0.4) -> np.ndarray:
    sphere_count = int(count * 0.7)
    ring_count = count - sphere_count

    sphere = _sphere_directions(rng, sphere_count) * 8.0

    angle = rng.random(ring_count) * 2 * np.pi
    dist = rng.uniform(12.0, 22.0, size=ring_count)
    x = dist * np.cos(angle)
    y = rng.uniform(-0.25, 0.25, size=ring_count)
    z = dist * np.sin(angle)

    # Tilt the ring about the X axis
    cos_t, sin_t = np.cos(tilt), np.sin(tilt)
    ring = np.stack([x, y * cos_t - z * sin_t, y * sin_t + z * cos_t], axis=1)

    return np.concatenate([sphere, ring], axis=0)


def generate_buddha(count: int, rng: np.random.Generator) -> np.ndarray:
    """Seated figure: head sphere, tapered body, wide crossed-leg base."""
    out = np.empty((count, 3))
    part = rng.random(count)

    head = part < 0.2
    n_head = int(head.sum())
    out[head] = _sphere_directions(rng, n_head) * 3.0 + np.array([0.0, 8.0, 0.0])

    body = (part >= 0.2) & (part < 0.6)
    n_body = int(body.sum())
    h = rng.uniform(-5.0, 5.0, size=n_body)
    r = 4 + (5 - np.abs(h)) * 0.5
    theta = rng.random(n_body) * 2 * np.pi
    out[body] = np.stack([r * np.cos(theta), h, r * np.sin(theta)], axis=1)

    base = part >= 0.6
    n_base = int(base.sum())
    r = rng.uniform(6.0, 12.0, size=n_base)
    theta = rng.random(n_base) * 2 * np.pi
    h = rng.uniform(-6.0, -4.0, size=n_base)
    out[base] = np.stack([r * np.cos(theta), h, r * np.sin(theta)], axis=1)

    return out


def generate_fireworks(count: int, rng: np.random.Generator) -> np.ndarray:
    r = rng.random(count) * 20.0
    streak = rng.random(count)
    return _sphere_directions(rng, count) * (r * streak)[:, None]


def rasterize_text(text: str) -> np.ndarray:
    """
    Draw text onto the offscreen canvas and return the (N, 2) array of lit
    pixel coordinates as (x, y), with y growing downward.
    """
    canvas = np.zeros((TEXT_CANVAS_HEIGHT, TEXT_CANVAS_WIDTH), dtype=np.uint8)
    if not text:
        return np.empty((0, 2), dtype=np.int64)

    font = cv2.FONT_HERSHEY_SIMPLEX
    thickness = 4
    scale = 2.0
    (text_w, text_h), baseline = cv2.getTextSize(text, font, scale, thickness)
    if text_w > TEXT_CANVAS_WIDTH * 0.95:
        scale *= TEXT_CANVAS_WIDTH * 0.95 / text_w
        thickness = max(1, int(round(thickness * scale / 2.0)))
        (text_w, text_h), baseline = cv2.getTextSize(text, font, scale, thickness)

    origin = ((TEXT_CANVAS_WIDTH - text_w) // 2,
              (TEXT_CANVAS_HEIGHT + text_h) // 2)
    cv2.putText(canvas, text, origin, font, scale, 255, thickness, cv2.LINE_AA)

    ys, xs = np.nonzero(canvas > 128)
    return np.stack([xs, ys], axis=1)


def generate_text(count: int, rng: np.random.Generator, text: str,
                  rasterizer: Optional[Callable[[str], np.ndarray]] = None) -> np.ndarray:
    pixels = (rasterizer or rasterize_text)(text)
    if len(pixels) == 0:
        logger.debug(f"Text {text!r} produced no pixels, using random fill")
        return generate_random(count, rng)

    picks = pixels[rng.integers(0, len(pixels), size=count)]
    x = (picks[:, 0] / TEXT_CANVAS_WIDTH - 0.5) * TEXT_WORLD_WIDTH
    # Raster Y grows downward
    y = -(picks[:, 1] / TEXT_CANVAS_HEIGHT - 0.5) * TEXT_WORLD_HEIGHT
    z = (rng.random(count) - 0.5) * TEXT_DEPTH
    return np.stack([x, y, z], axis=1)


_GENERATORS: Dict[ShapeType, Callable[[int, np.random.Generator], np.ndarray]] = {
    ShapeType.RANDOM: generate_random,
    ShapeType.HEART: generate_heart,
    ShapeType.FLOWER: generate_flower,
    ShapeType.SATURN: generate_saturn,
    ShapeType.BUDDHA: generate_buddha,
    ShapeType.FIREWORKS: generate_fireworks,
}


def generate(shape, count: int, base_scale: float = 1.0, text: str = "",
             rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Generate target coordinates for `count` points.

    Returns a flat float32 array of length 3 * count. Pass a seeded
    numpy Generator for reproducible output.
    """
    shape = ShapeType.parse(shape)
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    if rng is None:
        rng = np.random.default_rng()

    if shape is ShapeType.TEXT:
        points = generate_text(count, rng, text)
    else:
        points = _GENERATORS[shape](count, rng)

    return (points * base_scale).astype(np.float32).reshape(-1)
