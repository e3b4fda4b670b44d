"""
Gesture Particles
=================
A particle cloud that morphs between procedural shapes and reacts to hand
gestures seen by the webcam.

The session runs one cooperative loop interleaving two callbacks: detection
(once per new camera frame) and display (once per refresh).
"""

import argparse
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

import cv2
import numpy as np

from advanced_processing import ModeStabilizer
from control_panel import ControlPanel
from gesture_control import GestureConfig, GestureInterpreter, GestureSignal, LandmarkPoint
from hand_detector import DetectorConfig, HandDetector
from particle_field import FieldConfig, ParticleField, base_scale_for_viewport
from renderer import PointRenderer, RenderConfig
from shapes import ShapeType
from utils import PerformanceMonitor, TuningProfile

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

WINDOW_NAME = "Gesture Particles"


class InteractionController:
    """Routes gesture signals and panel selections into the particle field."""

    def __init__(self, particle_field: ParticleField, interpreter: GestureInterpreter,
                 stabilizer: Optional[ModeStabilizer] = None):
        self.field = particle_field
        self.interpreter = interpreter
        self.stabilizer = stabilizer or ModeStabilizer(
            interpreter.config.pointing_stability_frames)
        self.latest_signal = GestureSignal.neutral()
        self._last_pointing = (0.5, 0.5)

    def on_hands(self, hands: Sequence[Sequence[LandmarkPoint]]) -> GestureSignal:
        """Handle one detection cycle's hands."""
        signal = self._stabilize(self.interpreter.interpret(hands))
        self.field.apply_gesture_signal(signal)
        self.latest_signal = signal
        return signal

    def _stabilize(self, raw: GestureSignal) -> GestureSignal:
        # No hand is an explicit reset, not a noisy reading
        if not raw.hand_present:
            self.stabilizer.reset()
            return raw

        pointing, changed = self.stabilizer.update(raw.pointing_active)
        if changed:
            logger.debug(f"Pointing mode {'on' if pointing else 'off'}")

        if raw.pointing_active:
            self._last_pointing = (raw.pointing_x, raw.pointing_y)
        if pointing == raw.pointing_active:
            return raw

        if raw.pointing_active:
            # Pose held but mode not switched yet: no offset, and no expansion or shrink
            return replace(raw, pointing_active=False, openness=0.0, closedness=0.0)

        px, py = self._last_pointing
        return replace(raw, pointing_active=True, pointing_x=px, pointing_y=py)

    def select_shape(self, shape, text: str = "") -> bool:
        shape = ShapeType.parse(shape)
        if shape is ShapeType.TEXT and not text.strip():
            logger.warning("Ignoring text shape with empty text")
            return False
        self.field.set_shape(shape, text)
        return True

    def select_color(self, color):
        self.field.set_color(color)


@dataclass
class SessionConfig:
    """Top-level settings for one session."""
    width: int = 1280
    height: int = 720
    target_fps: int = 60

    particle_count: int = 40000
    initial_shape: str = "flower"
    initial_text: str = ""
    color: str = "#ffffff"
    enable_camera: bool = True

    particles: FieldConfig = field(default_factory=FieldConfig)
    gesture: GestureConfig = field(default_factory=GestureConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    render: RenderConfig = field(default_factory=RenderConfig)


class ParticleSession:
    """Owns the field, interpreter, detector and UI for one run."""

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or SessionConfig()
        cfg = self.config

        self.field = ParticleField(
            count=cfg.particle_count,
            base_scale=base_scale_for_viewport(cfg.width),
            config=cfg.particles,
        )
        self.field.set_color(cfg.color)

        self.interpreter = GestureInterpreter(cfg.gesture)
        self.controller = InteractionController(self.field, self.interpreter)
        if not self.controller.select_shape(cfg.initial_shape, cfg.initial_text):
            logger.info(f"Keeping default shape {self.field.current_shape.value}")

        self.detector = HandDetector(cfg.detector)
        self.renderer = PointRenderer(cfg.width, cfg.height, cfg.render)
        self.panel = ControlPanel(self.controller, cfg.gesture)
        self.monitor = PerformanceMonitor()

        self.running = False
        self._last_tick: Optional[float] = None

    def start(self):
        logger.info("Starting Gesture Particles...")
        if self.config.enable_camera:
            self.detector.start()
        else:
            logger.info("Camera disabled, keyboard control only")

        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(WINDOW_NAME, self.config.width, self.config.height)
        self.running = True

        try:
            self._main_loop()
        finally:
            self.stop()

    def _main_loop(self):
        logger.info("Press 'q' to quit, 1-6 for shapes, 't' for text, 'c' for color")
        frame_delay_ms = max(1, int(1000 / self.config.target_fps))

        while self.running:
            self.sync_window_size()
            self.tick_detection()
            frame = self.tick_display(time.monotonic())
            cv2.imshow(WINDOW_NAME, frame)

            key = cv2.waitKey(frame_delay_ms) & 0xFF
            self.handle_key(key)

            if cv2.getWindowProperty(WINDOW_NAME, cv2.WND_PROP_VISIBLE) < 1:
                self.running = False

    def sync_window_size(self) -> bool:
        """Match the render size to the window after the user resizes it."""
        try:
            _, _, win_w, win_h = cv2.getWindowImageRect(WINDOW_NAME)
        except cv2.error:
            return False

        if win_w <= 0 or win_h <= 0:
            return False
        if (win_w, win_h) == (self.renderer.width, self.renderer.height):
            return False

        self.renderer.resize(win_w, win_h)
        logger.debug(f"Render size set to {win_w}x{win_h}")
        return True

    def tick_detection(self) -> Optional[GestureSignal]:
        """Poll detector setup and process a new camera frame if there is one."""
        self.detector.poll()
        hands = self.detector.process()
        if hands is None:
            return None
        return self.controller.on_hands(hands)

    def tick_display(self, now: float) -> np.ndarray:
        """Advance the field and draw one frame."""
        if self._last_tick is not None:
            self.monitor.record_frame_time(now - self._last_tick)
        self._last_tick = now

        self.field.advance(now)
        self.field.consume_dirty()
        frame = self.renderer.render(self.field)
        return self.panel.draw(frame, self.controller.latest_signal,
                               self.detector.status_text(),
                               self.monitor.get_average_fps())

    def handle_key(self, key: int):
        if self.panel.handle_key(key):
            return
        if key in (ord('q'), ord('Q'), 27):
            self.running = False

    def stop(self):
        logger.info("Shutting down...")
        self.running = False
        self.detector.close()
        cv2.destroyAllWindows()
        logger.info("Shutdown complete")


def build_config(args: argparse.Namespace) -> SessionConfig:
    config = SessionConfig()
    if args.profile:
        profile = TuningProfile.load(args.profile)
        config.particles = profile.particles
        config.gesture = profile.gesture
        logger.info(f"Loaded tuning profile '{profile.name}'")

    config.width = args.width
    config.height = args.height
    config.particle_count = args.count
    config.initial_shape = args.shape
    config.initial_text = args.text
    config.color = args.color
    config.enable_camera = not args.no_camera
    config.detector.camera_index = args.camera
    config.detector.model_path = args.model_path
    return config


def main():
    parser = argparse.ArgumentParser(description="Gesture-controlled particle shapes")
    parser.add_argument("--camera", type=int, default=0,
                        help="Camera index to use")
    parser.add_argument("--count", type=int, default=40000,
                        help="Number of particles")
    parser.add_argument("--width", type=int, default=1280,
                        help="Window width")
    parser.add_argument("--height", type=int, default=720,
                        help="Window height")
    parser.add_argument("--shape", default="flower",
                        choices=[s.value for s in ShapeType],
                        help="Initial shape")
    parser.add_argument("--text", default="",
                        help="Text for --shape text")
    parser.add_argument("--color", default="#ffffff",
                        help="Particle color as #rrggbb")
    parser.add_argument("--model-path", default=None,
                        help="Path to hand_landmarker.task")
    parser.add_argument("--profile", default=None,
                        help="JSON tuning profile")
    parser.add_argument("--no-camera", action="store_true",
                        help="Run without gesture input")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    session = ParticleSession(build_config(args))

    try:
        session.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Error: {e}")
        raise


if __name__ == "__main__":
    main()
