#!/usr/bin/env python3
"""
Protocol definitions for the external collaborators.

Using Python's Protocol for structural subtyping.
Camera, face tracker and biometric prompt can be swapped for anything
that implements these methods, without requiring explicit inheritance.
"""

from concurrent.futures import Future
from typing import Protocol, runtime_checkable, Callable, List, Optional

from .models import Frame, TrackedFace, AuthResult
from .config import CaptureConfig

# Called on the capture thread for every frame the device delivers
FrameCallback = Callable[[Frame], None]

# Called once, off the lock queue, when a stream ends without stop()
StreamEndCallback = Callable[[str], None]


# =============================================================================
# CAPTURE
# =============================================================================

@runtime_checkable
class CaptureSession(Protocol):
    """A running frame stream. Exclusively owned by one LockController."""

    def stop(self) -> None:
        """
        Stop streaming and release the device.

        Must not return until no further frames will be delivered.
        """
        ...

    @property
    def is_running(self) -> bool:
        ...


@runtime_checkable
class FrameSource(Protocol):
    """Interface for a camera."""

    def start(
        self,
        config: CaptureConfig,
        on_frame: FrameCallback,
        on_stream_end: Optional[StreamEndCallback] = None
    ) -> CaptureSession:
        """
        Acquire the device and start streaming.

        Order: select device, lock configuration, select format, unlock,
        attach on_frame, start streaming. If the stream dies on its own
        (device unplugged, too many failed reads), on_stream_end is called
        with the reason. It is never called after stop().

        Raises:
            DeviceError: no usable device
        """
        ...


# =============================================================================
# TRACKING
# =============================================================================

@runtime_checkable
class FaceTracker(Protocol):
    """Interface for face detection and tracking."""

    def detect(self, frame: Frame) -> List[TrackedFace]:
        """
        Find faces from scratch. Used when nothing is being tracked.

        Args:
            frame: Current frame

        Returns:
            One TrackedFace per detected face
        """
        ...

    def track(self, frame: Frame, prior: List[TrackedFace]) -> List[TrackedFace]:
        """
        Follow previously seen faces into this frame.

        Args:
            frame: Current frame
            prior: Non-terminal observations from the previous cycle

        Returns:
            One updated TrackedFace per prior face, same face_id
        """
        ...

    def reset(self) -> None:
        """Discard per-session tracking state."""
        ...


# =============================================================================
# AUTHENTICATION
# =============================================================================

@runtime_checkable
class BiometricAuthenticator(Protocol):
    """Interface for the biometric prompt."""

    def authenticate(self, reason: str) -> "Future[AuthResult]":
        """
        Start a challenge. Must not block.

        Args:
            reason: Text shown to the user

        Returns:
            Future resolving to AuthResult. An exception on the future is
            treated as a failed challenge.
        """
        ...
