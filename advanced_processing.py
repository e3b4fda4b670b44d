"""
Noise handling for the gesture signal: mode hysteresis and landmark validation.
"""

import math
from typing import List, Sequence, Tuple

NUM_HAND_LANDMARKS = 21


class ModeStabilizer:
    """
    Holds a discrete mode (e.g. pointing on/off) until a new value has been
    seen for `stability_frames` consecutive frames.
    Prevents flapping between modes on noisy detections.
    """

    def __init__(self, stability_frames: int = 2, initial=False):
        self.stability_frames = max(1, int(stability_frames))
        self.initial = initial

        self.current = initial
        self.pending = initial
        self.pending_count = 0

    def update(self, detected) -> Tuple[object, bool]:
        """
        Feed one frame's raw mode.
        Returns (stable_mode, changed)
        """
        if detected == self.current:
            self.pending = detected
            self.pending_count = 0
            return self.current, False

        if detected == self.pending:
            self.pending_count += 1
        else:
            self.pending = detected
            self.pending_count = 1

        if self.pending_count >= self.stability_frames:
            self.current = detected
            self.pending_count = 0
            return self.current, True

        return self.current, False

    def reset(self):
        """Drop back to the initial mode."""
        self.current = self.initial
        self.pending = self.initial
        self.pending_count = 0


class LandmarkValidator:
    """
    Validates landmark lists before they are interpreted.
    """

    @staticmethod
    def validate_hand_landmarks(landmarks: Sequence) -> Tuple[bool, List[str]]:
        """
        Validate one hand's landmarks.
        Returns (is_valid, list_of_issues).
        """
        if landmarks is None:
            return False, ["No landmarks detected"]

        issues = []
        if len(landmarks) < NUM_HAND_LANDMARKS:
            issues.append(f"Missing landmarks: {NUM_HAND_LANDMARKS - len(landmarks)}")

        non_finite = sum(
            1 for lm in landmarks
            if not (math.isfinite(lm.x) and math.isfinite(lm.y) and math.isfinite(lm.z))
        )
        if non_finite:
            issues.append(f"Non-finite landmarks: {non_finite}")

        return len(issues) == 0, issues
