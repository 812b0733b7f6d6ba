#!/usr/bin/env python3
"""
Core data models for the privacy lock.

All immutable (frozen dataclasses) so observations and results can cross
thread boundaries freely. Mutable state lives in the components that own it
(PresenceAggregator, LockController).
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Any
from enum import Enum, auto

import numpy as np


# =============================================================================
# BOUNDING BOXES
# =============================================================================

@dataclass(frozen=True)
class BoundingBox:
    """Immutable bounding box in pixel coordinates."""
    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Tuple[int, int]:
        return ((self.x1 + self.x2) // 2, (self.y1 + self.y2) // 2)

    def iou(self, other: BoundingBox) -> float:
        """Calculate Intersection over Union with another box."""
        x1 = max(self.x1, other.x1)
        y1 = max(self.y1, other.y1)
        x2 = min(self.x2, other.x2)
        y2 = min(self.y2, other.y2)

        if x1 >= x2 or y1 >= y2:
            return 0.0

        intersection = (x2 - x1) * (y2 - y1)
        union = self.area + other.area - intersection

        return intersection / union if union > 0 else 0.0

    def to_tuple(self) -> Tuple[int, int, int, int]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x1, self.y1, self.x2, self.y2)

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> BoundingBox:
        """Create from (x, y, width, height) format."""
        return cls(x1=x, y1=y, x2=x + w, y2=y + h)


# =============================================================================
# FRAMES
# =============================================================================

@dataclass(frozen=True)
class Frame:
    """
    One captured image plus capture intrinsics.

    Owned by the FrameSource and handed by reference into exactly one
    tracking cycle. Nothing keeps a Frame after its cycle finishes.
    """
    image: Any                 # np.ndarray, HxWx3 BGR
    timestamp: float = field(default_factory=time.time)
    sequence: int = 0
    intrinsics: Optional[Any] = None  # 3x3 camera matrix when the camera is calibrated

    @property
    def is_valid(self) -> bool:
        """True if the buffer looks like a colour image."""
        image = self.image
        if not isinstance(image, np.ndarray) or image.size == 0:
            return False
        return image.ndim == 3 and image.shape[2] == 3

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height) of the image."""
        h, w = self.image.shape[:2]
        return (w, h)


@dataclass(frozen=True)
class VideoFormat:
    """A capture format a device offers."""
    width: int
    height: int
    fourcc: str = ""
    chroma_subsampling: str = "420"

    @property
    def pixels(self) -> int:
        return self.width * self.height

    @property
    def resolution(self) -> Tuple[int, int]:
        return (self.width, self.height)


# =============================================================================
# TRACKING
# =============================================================================

@dataclass(frozen=True)
class TrackedFace:
    """
    A face observation for one cycle.

    A new set of these supersedes the previous set every cycle. Terminal
    faces are reported for the cycle they ended in and never tracked again.
    """
    face_id: str
    box: BoundingBox
    confidence: float          # 0.0 to 1.0
    is_terminal: bool = False

    def is_alive(self, threshold: float) -> bool:
        """Alive for this cycle: confident enough and not terminal."""
        return not self.is_terminal and self.confidence >= threshold

    def as_terminal(self) -> TrackedFace:
        """Copy of this observation flagged as the last one for its track."""
        if self.is_terminal:
            return self
        return replace(self, is_terminal=True)


# =============================================================================
# PRESENCE
# =============================================================================

@dataclass(frozen=True)
class PresenceState:
    """Debounced presence. Only PresenceAggregator creates new values."""
    present: bool = False
    last_changed_at: float = 0.0


@dataclass(frozen=True)
class PresenceChangedEvent:
    """Emitted when the presence boolean flips."""
    previous: bool
    new: bool
    timestamp: float

    @property
    def lost(self) -> bool:
        return self.previous and not self.new


# =============================================================================
# SESSION
# =============================================================================

class SessionState(Enum):
    """Lock controller state."""
    IDLE = auto()            # Not running; initial and after stop()
    AUTHENTICATING = auto()  # Biometric challenge in flight
    MONITORING = auto()      # Camera on, presence gating content
    SUSPENDED = auto()       # App in background, resources released


class AuthFailureReason(Enum):
    """Why a biometric challenge was not granted."""
    NOT_ENROLLED = "not_enrolled"
    USER_CANCEL = "user_cancel"
    LOCKOUT = "lockout"
    HARDWARE_UNAVAILABLE = "hardware_unavailable"
    FAILED = "failed"
    CANCELLED = "cancelled"   # Superseded by stop() or the lifecycle


@dataclass(frozen=True)
class AuthResult:
    """Outcome of one biometric challenge."""
    granted: bool
    failure_reason: Optional[AuthFailureReason] = None
    message: Optional[str] = None

    @classmethod
    def success(cls) -> AuthResult:
        return cls(granted=True)

    @classmethod
    def failure(
        cls,
        reason: AuthFailureReason = AuthFailureReason.FAILED,
        message: Optional[str] = None
    ) -> AuthResult:
        return cls(granted=False, failure_reason=reason, message=message)
