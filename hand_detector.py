"""
Camera acquisition and MediaPipe hand landmark detection.

Setup (model download, landmarker creation, camera open) runs once on a
worker thread so the particle display can start immediately. Its progress is
exposed as an explicit DetectorState that the main loop polls.
"""

import logging
import os
import tempfile
import time
import urllib.request
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Tuple

import cv2
import numpy as np

from gesture_control import LandmarkPoint

logger = logging.getLogger(__name__)

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/hand_landmarker/"
    "hand_landmarker/float16/1/hand_landmarker.task"
)


class DetectorState(Enum):
    """Lifecycle of the gesture input pipeline."""
    UNINITIALIZED = auto()
    INITIALIZING = auto()
    READY = auto()
    FAILED = auto()


@dataclass
class DetectorConfig:
    """Camera and landmarker settings."""
    camera_index: int = 0
    frame_width: int = 640
    frame_height: int = 480
    fps_target: int = 30

    max_hands: int = 1
    detection_confidence: float = 0.5
    tracking_confidence: float = 0.5
    model_path: Optional[str] = None


class CameraFeed:
    """
    Webcam wrapper that reads frames on a worker and hands the latest one to
    the main loop together with a strictly increasing timestamp (ms).
    """

    def __init__(self, capture, executor: ThreadPoolExecutor):
        self.capture = capture
        self._executor = executor
        self._pending: Optional[Future] = None
        self._frame: Optional[np.ndarray] = None
        self._timestamp_ms = 0
        self._read_failures = 0
        self._released = False

    @classmethod
    def open(cls, config: DetectorConfig, executor: ThreadPoolExecutor) -> "CameraFeed":
        capture = cv2.VideoCapture(config.camera_index)
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, config.frame_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, config.frame_height)
        capture.set(cv2.CAP_PROP_FPS, config.fps_target)

        if not capture.isOpened():
            capture.release()
            raise RuntimeError(
                f"Failed to open camera {config.camera_index} "
                "(is it connected, in use, or blocked by permissions?)"
            )

        logger.info(f"Camera initialized: {config.frame_width}x{config.frame_height}")
        return cls(capture, executor)

    def _next_timestamp_ms(self) -> int:
        now_ms = int(time.monotonic() * 1000)
        if now_ms <= self._timestamp_ms:
            now_ms = self._timestamp_ms + 1
        return now_ms

    def poll(self) -> Optional[Tuple[np.ndarray, int]]:
        """Return (latest_frame, timestamp_ms), or None before the first frame."""
        if self._released:
            return None

        if self._pending is not None and self._pending.done():
            ok, frame = self._pending.result()
            self._pending = None
            if ok:
                self._frame = frame
                self._timestamp_ms = self._next_timestamp_ms()
                self._read_failures = 0
            else:
                self._read_failures += 1
                if self._read_failures == 1:
                    logger.warning("Failed to read frame")

        if self._pending is None:
            self._pending = self._executor.submit(self.capture.read)

        if self._frame is None:
            return None
        return self._frame, self._timestamp_ms

    def release(self):
        self._released = True
        if self._pending is not None:
            # A read in flight must finish before the capture is released
            if not self._pending.cancel():
                wait([self._pending], timeout=1.0)
            self._pending = None
        self.capture.release()


class HandDetector:
    """MediaPipe Tasks HandLandmarker in VIDEO mode, fed from a CameraFeed."""

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self.state = DetectorState.UNINITIALIZED
        self.error: Optional[str] = None

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hand-detector")
        self._setup_future: Optional[Future] = None
        self._landmarker = None
        self._camera: Optional[CameraFeed] = None
        self._last_timestamp_ms: Optional[int] = None

    def start(self):
        """Begin asynchronous setup. Only the first call has an effect."""
        if self.state is not DetectorState.UNINITIALIZED:
            return
        logger.info("Initializing hand detector...")
        self.state = DetectorState.INITIALIZING
        self._setup_future = self._executor.submit(self._setup)

    def poll(self) -> DetectorState:
        """Advance the setup state machine. Call from the main loop."""
        if self.state is DetectorState.INITIALIZING and self._setup_future.done():
            try:
                self._landmarker, self._camera = self._setup_future.result()
            except Exception as e:
                self.state = DetectorState.FAILED
                self.error = str(e) or e.__class__.__name__
                logger.error(f"Hand detector setup failed: {self.error}")
            else:
                self.state = DetectorState.READY
                logger.info("Hand detector ready")
        return self.state

    def wait_for_setup(self, timeout: Optional[float] = None) -> DetectorState:
        """Block until setup finishes (or timeout), then poll."""
        if self._setup_future is not None:
            wait([self._setup_future], timeout=timeout)
        return self.poll()

    def _setup(self):
        model_path = self._ensure_model_exists()
        landmarker = self._create_landmarker(model_path)
        try:
            camera = self._open_camera()
        except Exception:
            landmarker.close()
            raise
        return landmarker, camera

    def _ensure_model_exists(self) -> str:
        """Download the hand landmarker model if not present."""
        if self.config.model_path:
            if not os.path.exists(self.config.model_path):
                raise RuntimeError(f"Model file not found at {self.config.model_path}")
            return self.config.model_path

        model_dir = os.path.join(tempfile.gettempdir(), "mediapipe_models")
        os.makedirs(model_dir, exist_ok=True)
        model_path = os.path.join(model_dir, "hand_landmarker.task")

        if os.path.exists(model_path):
            logger.info(f"Using cached model from {model_path}")
            return model_path

        logger.info("Downloading hand landmarker model...")
        tmp_path = model_path + ".tmp"
        try:
            urllib.request.urlretrieve(MODEL_URL, tmp_path)
            os.replace(tmp_path, model_path)
        except OSError as e:
            raise RuntimeError(
                f"Could not download hand landmarker model ({e}). "
                f"Download it manually from {MODEL_URL} and pass --model-path"
            ) from e

        logger.info(f"Model downloaded to {model_path}")
        return model_path

    def _create_landmarker(self, model_path: str):
        # Import here so the particle display works without MediaPipe
        from mediapipe.tasks import python as mp_tasks
        from mediapipe.tasks.python import vision

        options = vision.HandLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_hands=self.config.max_hands,
            min_hand_detection_confidence=self.config.detection_confidence,
            min_hand_presence_confidence=self.config.detection_confidence,
            min_tracking_confidence=self.config.tracking_confidence,
        )
        return vision.HandLandmarker.create_from_options(options)

    def _open_camera(self) -> CameraFeed:
        return CameraFeed.open(self.config, self._executor)

    def process(self) -> Optional[List[List[LandmarkPoint]]]:
        """
        Detect hands on the newest camera frame.

        Returns None when the detector is not ready or no new frame arrived
        since the last call; otherwise a (possibly empty) list of hands.
        """
        if self.state is not DetectorState.READY:
            return None

        latest = self._camera.poll()
        if latest is None:
            return None

        frame, timestamp_ms = latest
        if timestamp_ms == self._last_timestamp_ms:
            return None
        self._last_timestamp_ms = timestamp_ms

        results = self._landmarker.detect_for_video(self._to_mp_image(frame), timestamp_ms)
        hands = [
            [LandmarkPoint(x=lm.x, y=lm.y, z=lm.z) for lm in hand]
            for hand in (results.hand_landmarks or [])
        ]
        logger.debug(f"Detected {len(hands)} hand(s) at {timestamp_ms} ms")
        return hands

    @staticmethod
    def _to_mp_image(frame: np.ndarray):
        import mediapipe as mp

        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

    def status_text(self) -> str:
        if self.state is DetectorState.FAILED:
            return f"Detector failed: {self.error}"
        if self.state is DetectorState.INITIALIZING:
            return "Detector loading..."
        if self.state is DetectorState.READY:
            return "Detector ready"
        return "Gesture input off"

    @staticmethod
    def _release_late_setup(future: Future):
        """Done-callback for a setup that finished after close()."""
        if future.cancelled() or future.exception() is not None:
            return
        landmarker, camera = future.result()
        camera.release()
        landmarker.close()
        logger.info("Released hand detector resources after late setup")

    def close(self, setup_timeout: float = 2.0):
        """Release the landmarker and camera."""
        if self.state is DetectorState.INITIALIZING:
            if not self._setup_future.cancel():
                self.wait_for_setup(timeout=setup_timeout)
                if self.state is DetectorState.INITIALIZING:
                    # Still running (e.g. model download); clean up whatever it opens
                    logger.warning("Hand detector setup still running at shutdown")
                    self._setup_future.add_done_callback(self._release_late_setup)
        if self._camera is not None:
            self._camera.release()
            self._camera = None
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        self._executor.shutdown(wait=False)
