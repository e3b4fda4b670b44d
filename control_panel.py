"""
Keyboard control panel and debug readout drawn over the particle view.
"""

from typing import Optional

import cv2
import numpy as np

from gesture_control import GestureConfig, GestureSignal, status_label
from shapes import ShapeType


KEY_ENTER = (10, 13)
KEY_BACKSPACE = (8, 127)
KEY_ESC = 27

SHAPE_KEYS = {
    ord('1'): ShapeType.HEART,
    ord('2'): ShapeType.FLOWER,
    ord('3'): ShapeType.SATURN,
    ord('4'): ShapeType.BUDDHA,
    ord('5'): ShapeType.FIREWORKS,
    ord('6'): ShapeType.RANDOM,
}

COLOR_PALETTE = [
    "#ffffff",
    "#ff4d6d",
    "#ffd166",
    "#06d6a0",
    "#4cc9f0",
    "#b388ff",
]

MAX_TEXT_LENGTH = 16


class ControlPanel:
    """Maps key presses to controller calls and draws the readout."""

    def __init__(self, controller, gesture_config: Optional[GestureConfig] = None):
        self.controller = controller
        self.gesture_config = gesture_config or GestureConfig()
        self.text_mode = False
        self.text_buffer = ""
        self.color_index = 0

    def handle_key(self, key: int) -> bool:
        """
        Handle one key code from cv2.waitKey (masked to 8 bits).
        Returns True if the key was consumed.
        """
        if key == 255 or key < 0:
            return False

        if self.text_mode:
            return self._handle_text_key(key)

        if key in SHAPE_KEYS:
            self.controller.select_shape(SHAPE_KEYS[key])
            return True
        if key in (ord('t'), ord('T')):
            self.text_mode = True
            self.text_buffer = ""
            return True
        if key in (ord('c'), ord('C')):
            self.color_index = (self.color_index + 1) % len(COLOR_PALETTE)
            self.controller.select_color(COLOR_PALETTE[self.color_index])
            return True
        return False

    def _handle_text_key(self, key: int) -> bool:
        if key == KEY_ESC:
            self.text_mode = False
            self.text_buffer = ""
        elif key in KEY_ENTER:
            self.text_mode = False
            if self.text_buffer.strip():
                self.controller.select_shape(ShapeType.TEXT, self.text_buffer)
            self.text_buffer = ""
        elif key in KEY_BACKSPACE:
            self.text_buffer = self.text_buffer[:-1]
        elif 32 <= key < 127 and len(self.text_buffer) < MAX_TEXT_LENGTH:
            self.text_buffer += chr(key)
        return True

    def draw(self, frame: np.ndarray, signal: GestureSignal,
             detector_status: str, fps: float = 0.0) -> np.ndarray:
        height, width = frame.shape[:2]

        move = (f"{signal.pointing_x:.2f}, {signal.pointing_y:.2f}"
                if signal.pointing_active else "OFF")
        lines = [
            f"Tension: {signal.openness:.2f}",
            f"Closed: {signal.closedness:.2f}",
            f"Status: {status_label(signal, self.gesture_config)}",
            f"Move: {move}",
            detector_status,
            f"FPS: {fps:.1f}",
        ]

        cv2.rectangle(frame, (0, 0), (230, 20 + 22 * len(lines)), (0, 0, 0), -1)
        for i, line in enumerate(lines):
            cv2.putText(frame, line, (10, 25 + i * 22),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.55, (255, 255, 255), 1, cv2.LINE_AA)

        if self.text_mode:
            prompt = f"Text: {self.text_buffer}_  (Enter=Go, Esc=Cancel)"
            cv2.putText(frame, prompt, (10, height - 40),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 255), 2, cv2.LINE_AA)

        cv2.putText(frame, "1-6:Shape  T:Text  C:Color  Q:Quit", (10, height - 10),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1, cv2.LINE_AA)
        return frame
