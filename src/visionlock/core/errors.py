#!/usr/bin/env python3
"""
Error taxonomy for the privacy lock.

DeviceError and AuthError reach the caller of LockController.start().
TrackingError is per-frame and never fatal. LifecycleRaceError marks a
stale callback; it is logged and dropped, never surfaced.
"""

from typing import Optional

from .models import AuthFailureReason


class VisionLockError(Exception):
    """Base class for all lock errors."""


class DeviceError(VisionLockError):
    """No usable capture device, or an unsupported device operation."""


class AuthError(VisionLockError):
    """Biometric challenge was not granted."""

    def __init__(
        self,
        reason: AuthFailureReason = AuthFailureReason.FAILED,
        message: Optional[str] = None
    ):
        self.reason = reason
        self.message = message
        text = reason.value if message is None else f"{reason.value}: {message}"
        super().__init__(text)


class TrackingError(VisionLockError):
    """A single frame could not be tracked."""

    def __init__(self, message: str, sequence: Optional[int] = None):
        self.sequence = sequence
        super().__init__(message)


class LifecycleRaceError(VisionLockError):
    """A callback arrived for an attempt or session that was already torn down."""

    def __init__(self, what: str, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"stale {what}: expected #{expected}, got #{received}")
