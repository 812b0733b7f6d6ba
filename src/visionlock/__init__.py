#!/usr/bin/env python3
"""
VisionLock - presence-gated privacy lock.

Watches the camera, reports whether exactly one trusted face is present,
and re-challenges the user biometrically whenever presence is lost.
"""

from .controller import LockController, StateTransition
from .core import (
    AuthError,
    AuthFailureReason,
    AuthResult,
    DeviceError,
    EventBus,
    LifecycleRaceError,
    LockConfig,
    PresenceEvent,
    PresenceState,
    SessionState,
    TrackedFace,
    TrackingError,
    VisionLockError,
)
from .presence import PresenceAggregator

__version__ = "0.1.0"

__all__ = [
    "LockController",
    "StateTransition",
    "PresenceAggregator",
    "AuthError",
    "AuthFailureReason",
    "AuthResult",
    "DeviceError",
    "EventBus",
    "LifecycleRaceError",
    "LockConfig",
    "PresenceEvent",
    "PresenceState",
    "SessionState",
    "TrackedFace",
    "TrackingError",
    "VisionLockError",
]
