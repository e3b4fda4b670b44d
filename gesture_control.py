"""
Gesture interpretation for the particle cloud.

Turns one frame of MediaPipe hand landmarks into a small continuous control
signal: how closed the hand is, how far the fingers are spread, and whether
the two-finger pointing pose is held (with its screen position).
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from advanced_processing import LandmarkValidator

logger = logging.getLogger(__name__)


@dataclass
class GestureConfig:
    """Heuristic breakpoints for gesture interpretation."""
    # Closedness remap: 1 - (normalized_openness - offset) / range
    closed_offset: float = 0.8
    closed_range: float = 1.5

    # Spread is measured in multiples of palm size
    spread_palm_ratio: float = 3.0

    # Front-facing cameras are mirrored
    mirror_x: bool = True

    # Pointing mode must persist this many detections before it toggles
    pointing_stability_frames: int = 2

    # Debug readout thresholds
    closed_status_threshold: float = 0.8
    tension_status_threshold: float = 0.5


@dataclass
class LandmarkPoint:
    """Simple landmark point with x, y, z coordinates."""
    x: float
    y: float
    z: float = 0.0


@dataclass(frozen=True)
class GestureSignal:
    """
    Per-frame control signal.

    `hand_present` is False only for the explicit no-hand reset produced by
    `neutral()`; a detected but relaxed hand also has low openness and
    closedness, but keeps `hand_present=True`.
    """
    openness: float = 0.0
    closedness: float = 0.0
    pointing_active: bool = False
    pointing_x: float = 0.5
    pointing_y: float = 0.5
    hand_present: bool = False

    @classmethod
    def neutral(cls) -> "GestureSignal":
        return cls()


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class GestureInterpreter:
    """Maps hand landmarks to a GestureSignal. Stateless between calls."""

    # Landmark indices
    WRIST = 0
    THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
    INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
    MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
    RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
    PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

    FINGERTIPS = (THUMB_TIP, INDEX_TIP, MIDDLE_TIP, RING_TIP, PINKY_TIP)

    def __init__(self, config: Optional[GestureConfig] = None):
        self.config = config or GestureConfig()

    def interpret(self, hands: Sequence[Sequence[LandmarkPoint]]) -> GestureSignal:
        """Interpret a detector result. Only the first hand is consulted."""
        if not hands:
            return GestureSignal.neutral()
        return self.interpret_hand(hands[0])

    def interpret_hand(self, landmarks: Sequence[LandmarkPoint]) -> GestureSignal:
        valid, issues = LandmarkValidator.validate_hand_landmarks(landmarks)
        if not valid:
            raise ValueError(f"Malformed hand landmarks: {'; '.join(issues)}")

        palm = self.palm_size(landmarks)
        closedness = self.closedness(landmarks, palm)
        openness = self.spread(landmarks, palm)

        pointing = self.is_pointing(landmarks)
        px, py = 0.5, 0.5
        if pointing:
            index_tip = landmarks[self.INDEX_TIP]
            middle_tip = landmarks[self.MIDDLE_TIP]
            px = (index_tip.x + middle_tip.x) / 2
            py = (index_tip.y + middle_tip.y) / 2
            if self.config.mirror_x:
                px = 1.0 - px

        return GestureSignal(
            openness=openness,
            closedness=closedness,
            pointing_active=pointing,
            pointing_x=px,
            pointing_y=py,
            hand_present=True,
        )

    def palm_size(self, landmarks: Sequence[LandmarkPoint]) -> float:
        """Planar wrist to index-base distance; normalizes for hand distance."""
        size = self._planar_distance(landmarks[self.WRIST], landmarks[self.INDEX_MCP])
        return max(size, 1e-6)

    def closedness(self, landmarks: Sequence[LandmarkPoint], palm: float) -> float:
        """1 for a fist, 0 for an open stretched hand."""
        wrist = landmarks[self.WRIST]
        total = sum(self._distance(landmarks[tip], wrist) for tip in self.FINGERTIPS)
        normalized_openness = (total / len(self.FINGERTIPS)) / palm
        cfg = self.config
        return _clamp01(1.0 - (normalized_openness - cfg.closed_offset) / cfg.closed_range)

    def spread(self, landmarks: Sequence[LandmarkPoint], palm: float) -> float:
        """Index-to-pinky tip distance relative to palm size."""
        span = self._planar_distance(landmarks[self.INDEX_TIP], landmarks[self.PINKY_TIP])
        return min(1.0, span / (palm * self.config.spread_palm_ratio))

    def finger_states(self, landmarks: Sequence[LandmarkPoint]) -> List[bool]:
        """Extension of index, middle, ring and pinky."""
        return [
            self._is_finger_extended(landmarks, self.INDEX_TIP, self.INDEX_PIP),
            self._is_finger_extended(landmarks, self.MIDDLE_TIP, self.MIDDLE_PIP),
            self._is_finger_extended(landmarks, self.RING_TIP, self.RING_PIP),
            self._is_finger_extended(landmarks, self.PINKY_TIP, self.PINKY_PIP),
        ]

    def is_pointing(self, landmarks: Sequence[LandmarkPoint]) -> bool:
        index, middle, ring, pinky = self.finger_states(landmarks)
        return index and middle and not ring and not pinky

    def _is_finger_extended(self, landmarks: Sequence[LandmarkPoint],
                            tip_idx: int, pip_idx: int) -> bool:
        # Compared by distance from the wrist so it works at any hand rotation
        wrist = landmarks[self.WRIST]
        return (self._planar_distance(landmarks[tip_idx], wrist) >
                self._planar_distance(landmarks[pip_idx], wrist))

    @staticmethod
    def _planar_distance(p1: LandmarkPoint, p2: LandmarkPoint) -> float:
        return math.hypot(p1.x - p2.x, p1.y - p2.y)

    @staticmethod
    def _distance(p1: LandmarkPoint, p2: LandmarkPoint) -> float:
        return math.sqrt((p1.x - p2.x) ** 2 + (p1.y - p2.y) ** 2 + (p1.z - p2.z) ** 2)


def status_label(signal: GestureSignal, config: Optional[GestureConfig] = None) -> str:
    """Human-readable summary for the debug readout."""
    config = config or GestureConfig()
    if signal.pointing_active:
        return "Moving"
    if signal.closedness > config.closed_status_threshold:
        return "Closed"
    if signal.openness > config.tension_status_threshold:
        return "Tension"
    return "Neutral"
