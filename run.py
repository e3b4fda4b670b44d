"""
Quick Start Script for Gesture Particles
Runs a system check and starts the particle session.
"""

import importlib
import sys

# (display name, distribution name, import name)
REQUIRED_PACKAGES = (
    ("OpenCV", "opencv-python", "cv2"),
    ("MediaPipe", "mediapipe", "mediapipe"),
    ("NumPy", "numpy", "numpy"),
)


def check_dependencies() -> list:
    """Print the installed version of each package; return the missing ones."""
    missing = []
    for label, package, module_name in REQUIRED_PACKAGES:
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            missing.append(package)
            print(f"  [X] {label} not found")
        else:
            print(f"  [OK] {label} {getattr(module, '__version__', 'unknown')}")
    return missing


def main():
    print("=" * 60)
    print("  GESTURE PARTICLES")
    print("=" * 60)
    print()

    # Check dependencies before importing anything that needs them
    print("[1/3] Checking dependencies...")
    missing = check_dependencies()
    if missing:
        print()
        print("Missing dependencies! Install with:")
        print(f"  pip install {' '.join(missing)}")
        print()
        print("Or run: pip install -e .")
        return 1

    from interaction import ParticleSession, SessionConfig
    from utils import get_camera_info, print_guide

    config = SessionConfig()

    # Check camera
    print()
    print("[2/3] Checking camera...")

    info = get_camera_info(config.detector)
    if "error" in info:
        config.enable_camera = False
        print(f"  [X] {info['error']}")
        print("  Continuing with keyboard control only.")
    else:
        print(f"  [OK] Camera available: {info['width']}x{info['height']} @ {info['fps']:.0f}fps")

        # Fewer particles on small cameras usually means a small machine
        if info["fps"] < 25 or info["width"] < 640:
            print("[!] Lower camera specs detected, reducing particle count...")
            config.particle_count = 20000

    print()
    print("[3/3] Starting particles...")
    print_guide()

    session = ParticleSession(config)

    try:
        session.start()
    except KeyboardInterrupt:
        print("\nInterrupted by user")
    except Exception as e:
        print(f"\nError: {e}")
        return 1

    print("\nGoodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
