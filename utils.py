"""
Configuration and utility helpers for Gesture Particles.
"""

from collections import deque
from dataclasses import asdict, dataclass, field, fields
import json
from typing import Optional

import cv2

from gesture_control import GestureConfig
from hand_detector import DetectorConfig
from particle_field import FieldConfig


def _known_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class TuningProfile:
    """Saved set of smoothing/threshold constants."""
    name: str = "default"
    particles: FieldConfig = field(default_factory=FieldConfig)
    gesture: GestureConfig = field(default_factory=GestureConfig)

    def save(self, path: str):
        """Save profile to JSON file."""
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def load(cls, path: str) -> 'TuningProfile':
        """Load profile from JSON file. Missing keys keep their defaults."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls(
            name=data.get("name", "default"),
            particles=FieldConfig(**_known_fields(FieldConfig, data.get("particles", {}))),
            gesture=GestureConfig(**_known_fields(GestureConfig, data.get("gesture", {}))),
        )


class PerformanceMonitor:
    """Rolling frame-rate estimate for the readout."""

    def __init__(self, max_samples: int = 60):
        self.frame_times = deque(maxlen=max_samples)

    def record_frame_time(self, duration_s: float):
        self.frame_times.append(duration_s)

    def get_average_fps(self) -> float:
        if not self.frame_times:
            return 0.0
        avg_time = sum(self.frame_times) / len(self.frame_times)
        return 1.0 / avg_time if avg_time > 0 else 0.0


CONTROLS_GUIDE = """
+============================================================+
|                 GESTURE PARTICLES CONTROLS                 |
+============================================================+
|  Spread fingers   -> Expand the cloud                      |
|  Fist             -> Shrink the cloud                      |
|  Victory (V)      -> Move the cloud with your fingertips   |
|  No hand          -> Cloud settles back to the center      |
+------------------------------------------------------------+
|  1 Heart  2 Flower  3 Saturn  4 Buddha  5 Fireworks        |
|  6 Random  T Text entry  C Next color  Q/Esc Quit          |
+============================================================+
"""


def print_guide():
    """Print the controls guide to console."""
    print(CONTROLS_GUIDE)


def get_camera_info(config: Optional[DetectorConfig] = None) -> dict:
    """
    Open the camera with the detector's requested settings and report what it
    actually delivers.
    """
    config = config or DetectorConfig()
    cap = cv2.VideoCapture(config.camera_index)
    try:
        if not cap.isOpened():
            return {"error": f"Cannot open camera {config.camera_index}"}

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.frame_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.frame_height)
        return {
            "index": config.camera_index,
            "width": int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": cap.get(cv2.CAP_PROP_FPS),
            "backend": cap.getBackendName(),
        }
    finally:
        cap.release()
