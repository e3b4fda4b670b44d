"""
Test suite for Gesture Particles.
Run with: python -m pytest tests.py -v
"""

import copy
import importlib
import math
import threading

import pytest
import numpy as np
from unittest.mock import MagicMock, patch
from concurrent.futures import ThreadPoolExecutor

from advanced_processing import LandmarkValidator, ModeStabilizer
from control_panel import COLOR_PALETTE, ControlPanel
from gesture_control import (
    GestureConfig, GestureInterpreter, GestureSignal, LandmarkPoint, status_label
)
from hand_detector import CameraFeed, DetectorConfig, DetectorState, HandDetector
from interaction import InteractionController, ParticleSession, SessionConfig
from particle_field import (
    FieldConfig, ParticleField, base_scale_for_viewport, parse_color
)
from renderer import PointRenderer, RenderConfig
from run import check_dependencies
from shapes import ShapeType, generate, generate_random, generate_text, rasterize_text
from utils import PerformanceMonitor, TuningProfile, get_camera_info


def make_hand(thumb=True, index=True, middle=True, ring=True, pinky=True, fan=0.0):
    """
    Synthetic 21-landmark hand, fingers pointing up (image y grows downward).
    `fan` pushes the index and pinky tips sideways to widen the spread.
    """
    wrist = (0.5, 0.8)
    points = [LandmarkPoint(*wrist)]

    if thumb:
        points += [LandmarkPoint(0.42, 0.75), LandmarkPoint(0.38, 0.7),
                   LandmarkPoint(0.35, 0.65), LandmarkPoint(0.33, 0.6)]
    else:
        points += [LandmarkPoint(0.42, 0.75), LandmarkPoint(0.43, 0.7),
                   LandmarkPoint(0.45, 0.68), LandmarkPoint(0.45, 0.65)]

    for base_x, extended, shift in ((0.44, index, -fan), (0.49, middle, 0.0),
                                    (0.54, ring, 0.0), (0.59, pinky, fan)):
        mcp = LandmarkPoint(base_x, 0.6)
        pip = LandmarkPoint(base_x, 0.45)
        if extended:
            dip = LandmarkPoint(base_x + shift / 2, 0.3)
            tip = LandmarkPoint(base_x + shift, 0.2)
        else:
            dip = LandmarkPoint(base_x, 0.55)
            tip = LandmarkPoint(base_x, 0.65)
        points += [mcp, pip, dip, tip]

    return points


def victory_hand():
    return make_hand(thumb=False, index=True, middle=True, ring=False, pinky=False)


def fist_hand():
    return make_hand(thumb=False, index=False, middle=False, ring=False, pinky=False)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def small_field(rng):
    return ParticleField(count=500, base_scale=1.0, rng=rng)


class TestShapeGenerator:
    """Tests for the procedural shape library."""

    @pytest.mark.parametrize("shape", list(ShapeType))
    @pytest.mark.parametrize("count", [1, 7, 1000])
    def test_fills_every_point(self, shape, count, rng):
        """Every shape should return 3N finite float32 values."""
        out = generate(shape, count, 1.0, text="HI", rng=rng)
        assert out.shape == (3 * count,)
        assert out.dtype == np.float32
        assert np.all(np.isfinite(out))

    def test_heart_bounds(self, rng):
        """Heart curve stays inside its half-scaled bounding box."""
        pts = generate("heart", 40000, 1.0, rng=rng).reshape(-1, 3)
        assert pts[:, 0].min() >= -8.0 - 1e-4 and pts[:, 0].max() <= 8.0 + 1e-4
        assert pts[:, 1].min() >= -8.5 - 1e-4 and pts[:, 1].max() <= 10.0
        assert pts[:, 2].min() >= -5.0 and pts[:, 2].max() <= 5.0

    def test_base_scale_applied(self, rng):
        """Base scale shrinks every coordinate."""
        pts = generate(ShapeType.HEART, 2000, 0.5, rng=rng).reshape(-1, 3)
        assert np.abs(pts[:, 0]).max() <= 4.0 + 1e-4
        assert np.abs(pts[:, 2]).max() <= 2.5 + 1e-4

    def test_saturn_sphere_and_ring(self, rng):
        """First 70% of points form the planet, the rest the ring."""
        count = 1000
        pts = generate(ShapeType.SATURN, count, 1.0, rng=rng).reshape(-1, 3)
        radii = np.linalg.norm(pts, axis=1)
        sphere_count = int(count * 0.7)

        assert np.allclose(radii[:sphere_count], 8.0, atol=1e-3)
        # Rotation preserves distance from the planet center
        assert radii[sphere_count:].min() >= 12.0 - 1e-3
        assert radii[sphere_count:].max() <= math.hypot(22.0, 0.25) + 1e-3

    def test_buddha_vertical_extent(self, rng):
        """Figure spans from the base to the top of the head."""
        pts = generate(ShapeType.BUDDHA, 5000, 1.0, rng=rng).reshape(-1, 3)
        assert pts[:, 1].min() >= -6.0 - 1e-4
        assert pts[:, 1].max() <= 11.0 + 1e-4

    def test_fireworks_inside_sphere(self, rng):
        pts = generate(ShapeType.FIREWORKS, 5000, 1.0, rng=rng).reshape(-1, 3)
        assert np.linalg.norm(pts, axis=1).max() <= 20.0 + 1e-3

    def test_random_extent(self, rng):
        out = generate(ShapeType.RANDOM, 5000, 1.0, rng=rng)
        assert out.min() >= -25.0 and out.max() <= 25.0

    def test_text_inside_slab(self, rng):
        """Text points land in the 40x20 world rectangle with shallow depth."""
        pts = generate(ShapeType.TEXT, 3000, 1.0, text="HI", rng=rng).reshape(-1, 3)
        assert np.abs(pts[:, 0]).max() <= 20.0
        assert np.abs(pts[:, 1]).max() <= 10.0
        assert np.abs(pts[:, 2]).max() <= 1.0

    def test_rasterize_text_has_pixels(self):
        """Rasterized text lights pixels inside the canvas."""
        pixels = rasterize_text("HI")
        assert len(pixels) > 0
        assert pixels[:, 0].max() < 200 and pixels[:, 1].max() < 100

    def test_blank_text_falls_back_to_random(self):
        """No lit pixels should produce the random fill, not an error."""
        def no_pixels(text):
            return np.empty((0, 2), dtype=np.int64)

        fallback = generate_text(50, np.random.default_rng(7), "HI", rasterizer=no_pixels)
        expected = generate_random(50, np.random.default_rng(7))
        assert np.allclose(fallback, expected)

        out = generate(ShapeType.TEXT, 50, 1.0, text="   ", rng=np.random.default_rng(7))
        assert out.shape == (150,)
        assert np.all(np.isfinite(out))

    def test_deterministic_with_seed(self):
        """Same seed should give the same points."""
        a = generate("flower", 100, 1.0, rng=np.random.default_rng(3))
        b = generate("flower", 100, 1.0, rng=np.random.default_rng(3))
        assert np.array_equal(a, b)

    def test_unknown_shape_rejected(self):
        with pytest.raises(ValueError):
            generate("dodecahedron", 10)

    def test_parse_accepts_names(self):
        """Tags are matched case-insensitively; enum members pass through."""
        assert ShapeType.parse(" Heart ") is ShapeType.HEART
        assert ShapeType.parse(ShapeType.TEXT) is ShapeType.TEXT


class TestParticleField:
    """Tests for the particle field state and smoothing."""

    def test_buffer_sizes(self, small_field):
        """Buffers are flat: 3N coordinates and N seeds."""
        assert small_field.positions.shape == (1500,)
        assert small_field.targets.shape == (1500,)
        assert small_field.randoms.shape == (500,)
        assert small_field.current_shape is ShapeType.FLOWER

    def test_rejects_empty_field(self):
        with pytest.raises(ValueError):
            ParticleField(count=0)

    def test_set_shape_leaves_positions(self, small_field):
        """Changing shape should only replace the target buffer."""
        before = small_field.positions.copy()
        old_target = small_field.targets.copy()

        small_field.set_shape("heart")

        assert np.array_equal(small_field.positions, before)
        assert not np.array_equal(small_field.targets, old_target)
        assert small_field.current_shape is ShapeType.HEART

    def test_text_without_pixels_fills_randomly(self, small_field):
        """Text that draws no pixels still gives a full random target set."""
        expected_rng = copy.deepcopy(small_field.rng)
        expected = generate_random(small_field.count, expected_rng).astype(np.float32).reshape(-1)

        with patch("shapes.rasterize_text", return_value=np.empty((0, 2), dtype=np.int64)):
            small_field.set_shape("text", "HI")

        assert small_field.current_shape is ShapeType.TEXT
        assert small_field.current_text == "HI"
        assert np.array_equal(small_field.targets, expected)

    def test_set_shape_marks_target_dirty(self, small_field):
        """Only the target buffer is flagged for upload after a shape change."""
        small_field.consume_dirty()
        small_field.set_shape(ShapeType.SATURN)
        assert small_field.consume_dirty() == (False, True)
        assert small_field.consume_dirty() == (False, False)

    def test_advance_converges_geometrically(self, small_field):
        """Remaining distance shrinks by (1 - morph_rate) each advance."""
        rate = small_field.config.morph_rate
        initial = np.abs(small_field.targets - small_field.positions)

        previous = initial.max()
        for _ in range(20):
            small_field.advance(0.0)
            gap = np.abs(small_field.targets - small_field.positions).max()
            assert gap <= previous + 1e-6
            previous = gap

        remaining = np.abs(small_field.targets - small_field.positions)
        assert np.allclose(remaining, initial * (1 - rate) ** 20, rtol=1e-3, atol=1e-3)

    def test_advance_updates_time_and_keeps_seeds(self, small_field):
        """Seeds never change; advance records the time."""
        seeds = small_field.randoms.copy()
        small_field.advance(12.5)
        small_field.set_shape("buddha")
        assert small_field.params.time == 12.5
        assert np.array_equal(small_field.randoms, seeds)
        assert small_field.consume_dirty() == (True, True)

    def test_neutral_signal_relaxes(self, small_field):
        """No input should drive expansion and offset back to zero."""
        params = small_field.params
        params.expansion = 0.8
        params.offset[:] = (10.0, -6.0)

        for _ in range(400):
            small_field.apply_gesture_signal(GestureSignal.neutral())

        assert params.expansion < 1e-3
        assert np.abs(params.offset).max() < 1e-3

    def test_changes_are_smoothed(self, small_field):
        """One update moves only a tenth of the way."""
        small_field.apply_gesture_signal(GestureSignal(openness=1.0, hand_present=True))
        assert small_field.params.expansion == pytest.approx(0.1)

    def test_expansion_dead_zone(self, small_field):
        """Openness at the dead zone gives no expansion; full openness gives 1."""
        for _ in range(300):
            small_field.apply_gesture_signal(GestureSignal(openness=0.2, hand_present=True))
        assert small_field.params.expansion == pytest.approx(0.0)

        for _ in range(300):
            small_field.apply_gesture_signal(GestureSignal(openness=1.0, hand_present=True))
        assert small_field.params.expansion == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.parametrize("closedness", [0.0, 0.15, 0.3])
    def test_closed_dead_zone_keeps_scale(self, small_field, closedness):
        """Slightly closed hands do not shrink the cloud."""
        for _ in range(300):
            small_field.apply_gesture_signal(
                GestureSignal(closedness=closedness, hand_present=True))
        assert small_field.params.scale == pytest.approx(1.0)

    def test_fist_shrinks(self, small_field):
        """A full fist settles at 1 - 0.7 * 0.5."""
        for _ in range(300):
            small_field.apply_gesture_signal(GestureSignal(closedness=1.0, hand_present=True))
        assert small_field.params.scale == pytest.approx(0.65, abs=1e-3)

    def test_pointing_suppresses_expansion_and_shrink(self, small_field):
        """Pointing mode wins over simultaneous openness and closedness."""
        signal = GestureSignal(openness=1.0, closedness=1.0, pointing_active=True,
                               pointing_x=0.75, pointing_y=0.25, hand_present=True)
        for _ in range(300):
            small_field.apply_gesture_signal(signal)

        params = small_field.params
        assert params.expansion == pytest.approx(0.0)
        assert params.scale == pytest.approx(1.0)
        assert params.offset[0] == pytest.approx(10.0, abs=1e-3)
        assert params.offset[1] == pytest.approx(7.5, abs=1e-3)

    def test_recenter_is_slower_than_follow(self, small_field):
        """Without pointing the offset eases back at the recenter rate."""
        params = small_field.params
        params.offset[:] = (10.0, 0.0)
        small_field.apply_gesture_signal(GestureSignal.neutral())
        assert params.offset[0] == pytest.approx(9.5)

    def test_set_color(self, small_field):
        small_field.set_color("#ff8000")
        assert small_field.params.color == pytest.approx((1.0, 128 / 255, 0.0))

    def test_parse_color_rejects_garbage(self):
        """Short or non-hex colour strings are rejected."""
        with pytest.raises(ValueError):
            parse_color("#12")
        with pytest.raises(ValueError):
            parse_color("#zzzzzz")

    def test_viewport_base_scale(self):
        """Narrow windows get half-size shapes."""
        assert base_scale_for_viewport(400) == 0.5
        assert base_scale_for_viewport(1280) == 1.0


class TestGestureInterpreter:
    """Tests for landmark interpretation."""

    @pytest.fixture
    def interpreter(self):
        return GestureInterpreter(GestureConfig())

    def test_no_hands_is_neutral(self, interpreter):
        """Empty detection is a neutral signal, not an error."""
        signal = interpreter.interpret([])
        assert signal.openness == 0.0
        assert signal.closedness == 0.0
        assert signal.pointing_active is False
        assert signal.hand_present is False

    def test_open_hand(self, interpreter):
        """Stretched fingers read as fully open."""
        signal = interpreter.interpret([make_hand()])
        assert signal.hand_present is True
        assert signal.closedness == pytest.approx(0.0)
        assert signal.pointing_active is False

    def test_fist_is_closed(self, interpreter):
        """Curled fingers read as fully closed."""
        signal = interpreter.interpret([fist_hand()])
        assert signal.closedness == pytest.approx(1.0)

    def test_spread_grows_with_fan(self, interpreter):
        """Spreading index and pinky apart raises openness up to 1."""
        narrow = interpreter.interpret([make_hand()])
        wide = interpreter.interpret([make_hand(fan=0.25)])
        assert 0.0 < narrow.openness < wide.openness
        assert wide.openness == pytest.approx(1.0)

    def test_victory_is_pointing(self, interpreter):
        """Index and middle up, ring and pinky down is the pointing pose."""
        signal = interpreter.interpret([victory_hand()])
        assert signal.pointing_active is True
        # Mirrored midpoint of the index and middle tips
        assert signal.pointing_x == pytest.approx(1.0 - (0.44 + 0.49) / 2)
        assert signal.pointing_y == pytest.approx(0.2)

    def test_mirroring_can_be_disabled(self):
        """With mirroring off the raw image x is reported."""
        interpreter = GestureInterpreter(GestureConfig(mirror_x=False))
        signal = interpreter.interpret([victory_hand()])
        assert signal.pointing_x == pytest.approx((0.44 + 0.49) / 2)

    def test_swapped_fingers_not_pointing(self, interpreter):
        """Ring and pinky up with index and middle down is not pointing."""
        hand = make_hand(thumb=False, index=False, middle=False, ring=True, pinky=True)
        assert interpreter.interpret([hand]).pointing_active is False

    def test_only_first_hand_used(self, interpreter):
        """Extra hands are ignored."""
        signal = interpreter.interpret([victory_hand(), fist_hand()])
        assert signal.pointing_active is True

    def test_malformed_hand_rejected(self, interpreter):
        """A truncated landmark list is a programming error."""
        with pytest.raises(ValueError):
            interpreter.interpret([make_hand()[:10]])

    def test_status_labels(self):
        """Readout label follows pointing, then closed, then tension."""
        assert status_label(GestureSignal(pointing_active=True, closedness=1.0)) == "Moving"
        assert status_label(GestureSignal(closedness=0.9)) == "Closed"
        assert status_label(GestureSignal(openness=0.6)) == "Tension"
        assert status_label(GestureSignal.neutral()) == "Neutral"


class TestAdvancedProcessing:
    """Tests for mode hysteresis and landmark validation."""

    def test_mode_needs_consecutive_frames(self):
        """Mode should only switch after threshold frames."""
        stabilizer = ModeStabilizer(stability_frames=2)
        assert stabilizer.update(True) == (False, False)
        assert stabilizer.update(True) == (True, True)
        assert stabilizer.update(True) == (True, False)

    def test_single_glitch_ignored(self):
        """One differing frame should not flip the mode."""
        stabilizer = ModeStabilizer(stability_frames=3)
        for _ in range(3):
            stabilizer.update(True)
        stabilizer.update(False)
        mode, _ = stabilizer.update(True)
        assert mode is True

    def test_reset(self):
        """Reset returns to the initial mode."""
        stabilizer = ModeStabilizer(stability_frames=1)
        stabilizer.update(True)
        stabilizer.reset()
        assert stabilizer.current is False

    def test_validator(self):
        """Complete finite hands pass; NaNs and missing data fail."""
        valid, issues = LandmarkValidator.validate_hand_landmarks(make_hand())
        assert valid and issues == []

        hand = make_hand()
        hand[3] = LandmarkPoint(float("nan"), 0.5)
        valid, issues = LandmarkValidator.validate_hand_landmarks(hand)
        assert not valid

        valid, issues = LandmarkValidator.validate_hand_landmarks(None)
        assert not valid


class TestInteractionController:
    """Tests for the glue between gestures, panel and field."""

    @pytest.fixture
    def controller(self, small_field):
        return InteractionController(small_field, GestureInterpreter(GestureConfig()))

    def test_pointing_needs_stable_frames(self, controller, small_field):
        """The offset only starts following once pointing mode is stable."""
        first = controller.on_hands([victory_hand()])
        assert first.pointing_active is False
        assert np.array_equal(small_field.params.offset, [0.0, 0.0])

        second = controller.on_hands([victory_hand()])
        assert second.pointing_active is True
        assert small_field.params.offset[0] > 0.0
        assert controller.latest_signal is second

    def test_pointing_pose_never_expands_or_shrinks(self, controller, small_field):
        """Holding the pointing pose blocks expansion and shrink from its first frame."""
        raw = controller.interpreter.interpret([victory_hand()])
        assert raw.openness > 0.2 and raw.closedness > 0.3

        for _ in range(4):
            controller.on_hands([victory_hand()])
            assert small_field.params.expansion == 0.0
            assert small_field.params.scale == 1.0

    def test_glitch_keeps_last_pointing_position(self, controller, small_field):
        """A single non-pointing frame keeps pointing mode and its position."""
        controller.on_hands([victory_hand()])
        pointing = controller.on_hands([victory_hand()])

        signal = controller.on_hands([make_hand(fan=0.25)])
        assert signal.pointing_active is True
        assert signal.pointing_x == pointing.pointing_x
        assert signal.pointing_y == pointing.pointing_y
        assert small_field.params.expansion == 0.0

    def test_no_hand_resets_pointing(self, controller):
        """Losing the hand drops pointing mode immediately."""
        controller.on_hands([victory_hand()])
        controller.on_hands([victory_hand()])

        signal = controller.on_hands([])
        assert signal == GestureSignal.neutral()
        assert controller.on_hands([victory_hand()]).pointing_active is False

    def test_signal_reaches_field(self, controller, small_field):
        """A spread hand starts expanding the cloud."""
        controller.on_hands([make_hand(fan=0.25)])
        assert small_field.params.expansion > 0.0

    def test_blank_text_ignored(self, controller, small_field):
        """Blank text leaves the current target untouched."""
        before = small_field.targets.copy()
        assert controller.select_shape("text", "  ") is False
        assert np.array_equal(small_field.targets, before)

    def test_select_shape_and_color(self, controller, small_field):
        """Panel selections are forwarded to the field."""
        assert controller.select_shape("text", "HI") is True
        assert small_field.current_shape is ShapeType.TEXT
        assert small_field.current_text == "HI"

        controller.select_color("#00ff00")
        assert small_field.params.color == (0.0, 1.0, 0.0)


class TestHandDetector:
    """Tests for detector setup state machine and frame gating."""

    def make_ready_detector(self, camera, landmarker):
        detector = HandDetector()
        with patch.object(HandDetector, "_setup", return_value=(landmarker, camera)):
            detector.start()
            assert detector.wait_for_setup(timeout=5) is DetectorState.READY
        return detector

    def test_initial_state(self):
        """Before start() nothing is detected."""
        detector = HandDetector()
        assert detector.state is DetectorState.UNINITIALIZED
        assert detector.process() is None
        assert detector.status_text() == "Gesture input off"
        detector.close()

    def test_setup_failure_is_reported(self):
        """Setup errors end in FAILED with the message kept for the readout."""
        detector = HandDetector()
        with patch.object(HandDetector, "_setup", side_effect=RuntimeError("no camera")):
            detector.start()
            state = detector.wait_for_setup(timeout=5)

        assert state is DetectorState.FAILED
        assert detector.error == "no camera"
        assert "no camera" in detector.status_text()
        assert detector.process() is None
        detector.close()

    def test_detects_once_per_frame(self):
        """Each camera frame is sent to the landmarker exactly once."""
        camera = MagicMock()
        camera.poll.return_value = (np.zeros((4, 4, 3), dtype=np.uint8), 100)
        landmarker = MagicMock()
        landmarker.detect_for_video.return_value = MagicMock(
            hand_landmarks=[[MagicMock(x=0.5, y=0.5, z=0.0)] * 21])

        detector = self.make_ready_detector(camera, landmarker)
        with patch.object(HandDetector, "_to_mp_image", side_effect=lambda frame: frame):
            hands = detector.process()
            assert len(hands) == 1 and len(hands[0]) == 21
            assert isinstance(hands[0][0], LandmarkPoint)

            # Same frame timestamp: skipped
            assert detector.process() is None
            assert landmarker.detect_for_video.call_count == 1

            camera.poll.return_value = (np.zeros((4, 4, 3), dtype=np.uint8), 133)
            assert detector.process() is not None
            assert landmarker.detect_for_video.call_count == 2

        detector.close()
        camera.release.assert_called_once()
        landmarker.close.assert_called_once()

    def test_no_hands_is_empty_list(self):
        """A processed frame with no hands returns an empty list, not None."""
        camera = MagicMock()
        camera.poll.return_value = (np.zeros((4, 4, 3), dtype=np.uint8), 5)
        landmarker = MagicMock()
        landmarker.detect_for_video.return_value = MagicMock(hand_landmarks=[])

        detector = self.make_ready_detector(camera, landmarker)
        with patch.object(HandDetector, "_to_mp_image", side_effect=lambda frame: frame):
            assert detector.process() == []
        detector.close()

    def test_close_releases_late_setup(self):
        """Camera and landmarker from a setup that outlives close() are still released."""
        camera, landmarker = MagicMock(), MagicMock()
        setup_started = threading.Event()
        setup_may_finish = threading.Event()
        released = threading.Event()
        landmarker.close.side_effect = lambda: released.set()

        def slow_setup():
            setup_started.set()
            setup_may_finish.wait(timeout=5)
            return landmarker, camera

        detector = HandDetector()
        with patch.object(HandDetector, "_setup", side_effect=slow_setup):
            detector.start()
            assert setup_started.wait(timeout=5)
            detector.close(setup_timeout=0.05)
            assert detector.state is DetectorState.INITIALIZING
            camera.release.assert_not_called()

            setup_may_finish.set()
            assert released.wait(timeout=5)

        camera.release.assert_called_once()
        landmarker.close.assert_called_once()


class TestCameraFeed:
    """Tests for the worker-backed camera reader."""

    def test_timestamps_increase(self):
        """Each new frame gets a strictly larger timestamp."""
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        capture = MagicMock()
        capture.read.return_value = (True, frame)

        with ThreadPoolExecutor(max_workers=1) as executor:
            feed = CameraFeed(capture, executor)
            assert feed.poll() is None

            feed._pending.result(timeout=5)
            first = feed.poll()
            assert first is not None and first[0] is frame

            feed._pending.result(timeout=5)
            second = feed.poll()
            assert second[1] > first[1]

            feed.release()
        capture.release.assert_called_once()

    def test_failed_read_keeps_last_frame(self):
        """A failed read yields no frame instead of raising."""
        capture = MagicMock()
        capture.read.return_value = (False, None)

        with ThreadPoolExecutor(max_workers=1) as executor:
            feed = CameraFeed(capture, executor)
            feed.poll()
            feed._pending.result(timeout=5)
            assert feed.poll() is None
            feed.release()


class TestPointRenderer:
    """Tests for the CPU point renderer."""

    def test_render_shape_and_color(self, small_field):
        """Output is a BGR image tinted by the field colour."""
        renderer = PointRenderer(160, 120)
        small_field.set_color("#ff0000")
        image = renderer.render(small_field)

        assert image.shape == (120, 160, 3)
        assert image.dtype == np.uint8
        assert image[..., 2].max() > 0
        assert image[..., 0].max() == 0 and image[..., 1].max() == 0

    def test_resize_changes_output(self, small_field):
        """Resize changes the image size."""
        renderer = PointRenderer(160, 120)
        renderer.resize(200, 100)
        assert renderer.render(small_field).shape == (100, 200, 3)

    def test_offset_moves_cloud(self, small_field):
        """Positive x offset moves points to the right."""
        # Distant camera keeps the whole cloud on screen
        renderer = PointRenderer(320, 240, RenderConfig(camera_distance=200.0))
        sx_center, _, _ = renderer.project(small_field)
        small_field.params.offset[0] = 5.0
        sx_moved, _, _ = renderer.project(small_field)
        assert len(sx_moved) == len(sx_center) == small_field.count
        assert sx_moved.mean() > sx_center.mean()

    def test_expansion_spreads_points(self, small_field):
        """Expansion pushes points away from the center."""
        renderer = PointRenderer(320, 240, RenderConfig(camera_distance=200.0))
        sx_rest, _, _ = renderer.project(small_field)
        small_field.params.expansion = 0.3
        sx_wide, _, _ = renderer.project(small_field)
        assert np.std(sx_wide) > np.std(sx_rest)

    def test_points_behind_camera_culled(self, small_field):
        """Points behind the near plane are dropped."""
        renderer = PointRenderer(320, 240, RenderConfig(camera_distance=200.0))
        small_field.params.offset[:] = (0.0, 0.0)
        small_field.positions[2::3] = 500.0
        sx, _, _ = renderer.project(small_field)
        assert len(sx) == 0

    def test_field_buffers_untouched(self, small_field):
        """Rendering never writes back into the particle buffers."""
        before = small_field.positions.copy()
        small_field.params.expansion = 0.5
        small_field.params.blend = 0.5
        PointRenderer(100, 100).render(small_field)
        assert np.array_equal(small_field.positions, before)


class TestControlPanel:
    """Tests for keyboard handling and the readout."""

    def test_shape_keys(self):
        """Number keys select the matching shape."""
        controller = MagicMock()
        panel = ControlPanel(controller)
        assert panel.handle_key(ord('1')) is True
        controller.select_shape.assert_called_once_with(ShapeType.HEART)

    def test_text_entry(self):
        """Typed text with backspace is submitted on Enter."""
        controller = MagicMock()
        panel = ControlPanel(controller)
        panel.handle_key(ord('t'))
        for ch in "HI":
            panel.handle_key(ord(ch))
        panel.handle_key(8)
        panel.handle_key(ord('I'))
        panel.handle_key(13)

        controller.select_shape.assert_called_once_with(ShapeType.TEXT, "HI")
        assert panel.text_mode is False

    def test_escape_cancels_text(self):
        """Esc leaves text mode without submitting."""
        controller = MagicMock()
        panel = ControlPanel(controller)
        panel.handle_key(ord('t'))
        panel.handle_key(ord('q'))
        panel.handle_key(27)
        controller.select_shape.assert_not_called()
        assert panel.text_mode is False

    def test_color_cycles(self):
        """'c' moves to the next palette colour."""
        controller = MagicMock()
        panel = ControlPanel(controller)
        panel.handle_key(ord('c'))
        controller.select_color.assert_called_once_with(COLOR_PALETTE[1])

    def test_unbound_key_not_consumed(self):
        """Keys the panel does not bind are left for the session."""
        panel = ControlPanel(MagicMock())
        assert panel.handle_key(ord('q')) is False
        assert panel.handle_key(255) is False

    def test_draw_keeps_frame_size(self):
        """The overlay draws in place on the frame."""
        panel = ControlPanel(MagicMock())
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        out = panel.draw(frame, GestureSignal(pointing_active=True), "Detector ready", 60.0)
        assert out.shape == (240, 320, 3)
        assert out.max() > 0


class TestUtils:
    """Tests for tuning profiles, environment checks and performance monitoring."""

    def test_profile_round_trip(self, tmp_path):
        """Saved profile should load back with the same values."""
        profile = TuningProfile(name="calm",
                                particles=FieldConfig(follow_rate=0.05),
                                gesture=GestureConfig(mirror_x=False))
        path = tmp_path / "profile.json"
        profile.save(str(path))

        loaded = TuningProfile.load(str(path))
        assert loaded.name == "calm"
        assert loaded.particles.follow_rate == 0.05
        assert loaded.gesture.mirror_x is False

    def test_profile_ignores_unknown_keys(self, tmp_path):
        """Unknown keys are dropped and missing sections keep defaults."""
        path = tmp_path / "profile.json"
        path.write_text('{"particles": {"morph_rate": 0.1, "bogus": 1}}')
        loaded = TuningProfile.load(str(path))
        assert loaded.particles.morph_rate == 0.1
        assert loaded.gesture == GestureConfig()

    def test_average_fps(self):
        """FPS is the inverse of the mean frame time."""
        monitor = PerformanceMonitor()
        assert monitor.get_average_fps() == 0.0
        for _ in range(10):
            monitor.record_frame_time(0.02)
        assert monitor.get_average_fps() == pytest.approx(50.0)

    def test_dependency_check_reports_versions(self, capsys):
        """Installed packages are listed with their versions."""
        assert check_dependencies() == []
        assert f"NumPy {np.__version__}" in capsys.readouterr().out

    def test_missing_dependency_listed(self):
        """A package that fails to import is reported by its install name."""
        real_import = importlib.import_module

        def fake_import(name):
            if name == "mediapipe":
                raise ImportError(name)
            return real_import(name)

        with patch("run.importlib.import_module", side_effect=fake_import):
            assert check_dependencies() == ["mediapipe"]

    def test_camera_info_unavailable(self):
        """An unopenable camera is reported, and the capture still released."""
        capture = MagicMock()
        capture.isOpened.return_value = False
        with patch("utils.cv2.VideoCapture", return_value=capture):
            info = get_camera_info(DetectorConfig(camera_index=3))
        assert info == {"error": "Cannot open camera 3"}
        capture.release.assert_called_once()

    def test_camera_info_reports_settings(self):
        """Requested resolution is applied before reading the camera back."""
        capture = MagicMock()
        capture.isOpened.return_value = True
        capture.get.return_value = 30.0
        capture.getBackendName.return_value = "V4L2"
        with patch("utils.cv2.VideoCapture", return_value=capture):
            info = get_camera_info(DetectorConfig(frame_width=640, frame_height=480))

        assert info["fps"] == 30.0 and info["backend"] == "V4L2"
        assert capture.set.call_count == 2
        capture.release.assert_called_once()


# Integration test
class TestParticleSession:
    """Integration tests for one session without a camera or window."""

    @pytest.fixture
    def session(self):
        config = SessionConfig(width=320, height=240, particle_count=500,
                               enable_camera=False)
        session = ParticleSession(config)
        yield session
        session.detector.close()

    def test_display_tick(self, session):
        """A display tick advances time and returns a full frame."""
        frame = session.tick_display(1.0)
        assert frame.shape == (240, 320, 3)
        assert session.field.params.time == 1.0
        assert session.field.base_scale == 0.5

    def test_detection_tick_without_camera(self, session):
        """With the camera off, detection ticks do nothing."""
        assert session.tick_detection() is None
        assert session.detector.state is DetectorState.UNINITIALIZED

    def test_keys(self, session):
        """Shape keys reach the field; 'q' stops the loop."""
        session.running = True
        session.handle_key(ord('3'))
        assert session.field.current_shape is ShapeType.SATURN
        session.handle_key(ord('q'))
        assert session.running is False

    def test_window_resize_updates_render_size(self, session):
        """Frames follow the window size after a resize."""
        with patch("interaction.cv2.getWindowImageRect", return_value=(0, 0, 640, 360)):
            assert session.sync_window_size() is True
            assert session.sync_window_size() is False
        assert session.tick_display(0.5).shape == (360, 640, 3)

    def test_hidden_window_keeps_render_size(self, session):
        """An empty window rect leaves the render size alone."""
        with patch("interaction.cv2.getWindowImageRect", return_value=(-1, -1, -1, -1)):
            assert session.sync_window_size() is False
        assert session.tick_display(0.5).shape == (240, 320, 3)

    def test_initial_text_shape(self):
        """Initial text shape and colour come from the session config."""
        config = SessionConfig(width=320, height=240, particle_count=200,
                               enable_camera=False, initial_shape="text",
                               initial_text="OK", color="#4cc9f0")
        session = ParticleSession(config)
        assert session.field.current_shape is ShapeType.TEXT
        assert session.field.params.color == parse_color("#4cc9f0")
        session.detector.close()

    def test_gesture_pipeline(self, session):
        """Landmarks in, smoothed field parameters out."""
        for _ in range(5):
            session.controller.on_hands([victory_hand()])
        assert session.controller.latest_signal.pointing_active is True
        assert session.field.params.offset[0] > 0.0
        assert session.field.params.scale == pytest.approx(1.0)
        assert session.field.params.expansion == pytest.approx(0.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
