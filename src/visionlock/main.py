#!/usr/bin/env python3
"""
VisionLock - Demo Host
======================
Runs the lock against a local webcam and prints presence changes.

  Camera → InsightFace tracking → presence → FACE_PRESENT / FACE_NOT_PRESENT

The terminal stands in for the biometric prompt. SIGUSR1 / SIGUSR2 play
the role of the app going to background / coming to foreground.

Run:
  python -m visionlock
  python -m visionlock --config lock.yaml --policy at_least_one
"""

import argparse
import logging
import signal
import sys
import time
from datetime import datetime
from typing import Optional, List

from .auth import CallableAuthenticator, ConsoleAuthenticator
from .capture import OpenCVFrameSource
from .controller import LockController
from .core.config import CameraPosition, CaptureConfig, LockConfig, PresenceConfig, PresencePolicy
from .core.errors import VisionLockError
from .core.events import EventLogger
from .perception.face import InsightFaceTracker

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> LockConfig:
    config = LockConfig.from_yaml(args.config) if args.config else LockConfig()
    data = config.to_dict()

    if args.camera is not None:
        position = CameraPosition(data["capture"]["position"])
        key = "front_device" if position == CameraPosition.FRONT else "back_device"
        data["capture"][key] = args.camera
    if args.policy:
        data["presence"]["policy"] = args.policy
    if args.threshold is not None:
        data["presence"]["confidence_threshold"] = args.threshold

    return LockConfig(
        presence=PresenceConfig(**data["presence"]),
        capture=CaptureConfig(**data["capture"]),
        tracker=config.tracker,
        prompt_reason=config.prompt_reason,
        reentry_policy=config.reentry_policy,
    )


def print_status(lock: LockController) -> None:
    ts = datetime.now().strftime("%H:%M:%S")
    status = lock.get_status()
    cycle = status["cycle"] or {}
    shown = "SHOW" if status["present"] else "HIDE"
    print(f"[{ts}] {status['state']:<14} {shown} | "
          f"Faces:{status['active_faces']} | "
          f"Frames:{cycle.get('processed', 0)} dropped:{cycle.get('dropped', 0)}")


def run(args: argparse.Namespace) -> int:
    config = build_config(args)

    if args.auto_grant:
        authenticator = CallableAuthenticator(lambda reason: True)
    else:
        authenticator = ConsoleAuthenticator()

    lock = LockController(
        authenticator=authenticator,
        frame_source=OpenCVFrameSource(),
        face_tracker=InsightFaceTracker(config.tracker),
        config=config,
    )
    EventLogger().attach(lock.event_bus)

    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda *_: lock.on_app_background())
        signal.signal(signal.SIGUSR2, lambda *_: lock.on_app_foreground())

    try:
        lock.start()
    except VisionLockError as e:
        logger.error(f"Could not start lock: {e}")
        lock.close()
        authenticator.shutdown()
        return 1

    try:
        while True:
            time.sleep(args.interval)
            print_status(lock)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        lock.close()
        authenticator.shutdown()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="VisionLock presence-gated privacy lock")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--camera", "-c", type=int, default=None, help="Camera device ID")
    parser.add_argument("--policy", choices=[p.value for p in PresencePolicy], help="Multi-face policy")
    parser.add_argument("--threshold", type=float, default=None, help="Face confidence threshold")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between status lines")
    parser.add_argument("--auto-grant", action="store_true", help="Skip the prompt (camera testing)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
