#!/usr/bin/env python3
"""
Core module for VisionLock.

Contains data models, protocols, configuration, events and errors.
"""

from .models import (
    BoundingBox,
    Frame,
    VideoFormat,
    TrackedFace,
    PresenceState,
    PresenceChangedEvent,
    SessionState,
    AuthFailureReason,
    AuthResult,
)

from .protocols import (
    CaptureSession,
    FrameSource,
    FaceTracker,
    BiometricAuthenticator,
)

from .config import (
    PresencePolicy,
    ReentryPolicy,
    CameraPosition,
    PresenceConfig,
    CaptureConfig,
    TrackerConfig,
    LockConfig,
)

from .events import (
    PresenceEvent,
    SubscriptionToken,
    EventBus,
    EventLogger,
)

from .errors import (
    VisionLockError,
    DeviceError,
    AuthError,
    TrackingError,
    LifecycleRaceError,
)

__all__ = [
    # Models
    "BoundingBox",
    "Frame",
    "VideoFormat",
    "TrackedFace",
    "PresenceState",
    "PresenceChangedEvent",
    "SessionState",
    "AuthFailureReason",
    "AuthResult",
    # Protocols
    "CaptureSession",
    "FrameSource",
    "FaceTracker",
    "BiometricAuthenticator",
    # Config
    "PresencePolicy",
    "ReentryPolicy",
    "CameraPosition",
    "PresenceConfig",
    "CaptureConfig",
    "TrackerConfig",
    "LockConfig",
    # Events
    "PresenceEvent",
    "SubscriptionToken",
    "EventBus",
    "EventLogger",
    # Errors
    "VisionLockError",
    "DeviceError",
    "AuthError",
    "TrackingError",
    "LifecycleRaceError",
]
