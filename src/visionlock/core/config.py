#!/usr/bin/env python3
"""
Lock configuration with validation.

All configs are frozen dataclasses for immutability.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, Tuple


class PresencePolicy(Enum):
    """How many active faces count as "present"."""
    EXACTLY_ONE = "exactly_one"    # 0 or >=2 faces both mean not present
    AT_LEAST_ONE = "at_least_one"


class ReentryPolicy(Enum):
    """What start() does while a challenge is already in flight."""
    JOIN = "join"          # Wait on the in-flight challenge
    RESTART = "restart"    # Discard it and issue a new one


class CameraPosition(Enum):
    FRONT = "front"
    BACK = "back"


# =============================================================================
# COMPONENT CONFIGS
# =============================================================================

@dataclass(frozen=True)
class PresenceConfig:
    """Presence aggregation configuration."""
    confidence_threshold: float = 0.3   # Below this a face is terminal
    policy: PresencePolicy = PresencePolicy.EXACTLY_ONE

    def __post_init__(self):
        if not 0 <= self.confidence_threshold <= 1:
            raise ValueError(f"confidence_threshold must be 0-1, got {self.confidence_threshold}")
        if not isinstance(self.policy, PresencePolicy):
            object.__setattr__(self, "policy", PresencePolicy(self.policy))


@dataclass(frozen=True)
class CaptureConfig:
    """Camera selection and format negotiation."""
    position: CameraPosition = CameraPosition.FRONT
    # Device index per position; laptops expose the user-facing camera first
    front_device: int = 0
    back_device: int = 1
    chroma_subsampling: str = "420"
    fourccs: Tuple[str, ...] = ("NV12", "I420", "YV12", "MJPG", "YUYV")
    candidate_resolutions: Tuple[Tuple[int, int], ...] = (
        (3840, 2160), (2560, 1440), (1920, 1080), (1280, 720), (640, 480),
    )
    discard_late_frames: bool = True
    max_read_failures: int = 10     # Consecutive failed reads before the stream gives up
    # 3x3 intrinsic matrix from an offline calibration, attached to every frame
    camera_matrix: Optional[Tuple[Tuple[float, ...], ...]] = None

    def __post_init__(self):
        if not isinstance(self.position, CameraPosition):
            object.__setattr__(self, "position", CameraPosition(self.position))
        if not self.discard_late_frames:
            raise ValueError("discard_late_frames cannot be disabled")
        if self.max_read_failures < 1:
            raise ValueError(f"max_read_failures must be >= 1, got {self.max_read_failures}")
        object.__setattr__(self, "fourccs", tuple(self.fourccs))
        object.__setattr__(
            self, "candidate_resolutions",
            tuple(tuple(r) for r in self.candidate_resolutions)
        )
        if self.camera_matrix is not None:
            matrix = tuple(tuple(float(v) for v in row) for row in self.camera_matrix)
            if len(matrix) != 3 or any(len(row) != 3 for row in matrix):
                raise ValueError("camera_matrix must be 3x3")
            object.__setattr__(self, "camera_matrix", matrix)

    @property
    def device_index(self) -> int:
        if self.position == CameraPosition.FRONT:
            return self.front_device
        return self.back_device


@dataclass(frozen=True)
class TrackerConfig:
    """Face detection/tracking configuration."""
    model_name: str = "buffalo_s"   # InsightFace model pack
    detection_threshold: float = 0.5
    iou_threshold: float = 0.3      # Min IoU to carry a prior region forward
    det_size: Tuple[int, int] = (640, 640)
    use_gpu: bool = False

    def __post_init__(self):
        if not 0 <= self.detection_threshold <= 1:
            raise ValueError(f"detection_threshold must be 0-1, got {self.detection_threshold}")
        if not 0 <= self.iou_threshold <= 1:
            raise ValueError(f"iou_threshold must be 0-1, got {self.iou_threshold}")
        object.__setattr__(self, "det_size", tuple(self.det_size))


# =============================================================================
# LOCK CONFIG
# =============================================================================

@dataclass(frozen=True)
class LockConfig:
    """Complete lock configuration."""
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)

    prompt_reason: str = "Making sure it's you!"
    reentry_policy: ReentryPolicy = ReentryPolicy.JOIN

    def __post_init__(self):
        if not self.prompt_reason:
            raise ValueError("prompt_reason must not be empty")
        if not isinstance(self.reentry_policy, ReentryPolicy):
            object.__setattr__(self, "reentry_policy", ReentryPolicy(self.reentry_policy))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockConfig":
        """Create config from dictionary (e.g., YAML file)."""
        data = data or {}
        return cls(
            presence=PresenceConfig(**data.get("presence", {})),
            capture=CaptureConfig(**data.get("capture", {})),
            tracker=TrackerConfig(**data.get("tracker", {})),
            prompt_reason=data.get("prompt_reason", "Making sure it's you!"),
            reentry_policy=data.get("reentry_policy", ReentryPolicy.JOIN.value),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "LockConfig":
        """Load config from YAML file."""
        import yaml
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "presence": {
                "confidence_threshold": self.presence.confidence_threshold,
                "policy": self.presence.policy.value,
            },
            "capture": {
                "position": self.capture.position.value,
                "front_device": self.capture.front_device,
                "back_device": self.capture.back_device,
                "chroma_subsampling": self.capture.chroma_subsampling,
                "fourccs": list(self.capture.fourccs),
                "candidate_resolutions": [list(r) for r in self.capture.candidate_resolutions],
                "discard_late_frames": self.capture.discard_late_frames,
                "max_read_failures": self.capture.max_read_failures,
                "camera_matrix": (
                    [list(row) for row in self.capture.camera_matrix]
                    if self.capture.camera_matrix is not None else None
                ),
            },
            "tracker": {
                "model_name": self.tracker.model_name,
                "detection_threshold": self.tracker.detection_threshold,
                "iou_threshold": self.tracker.iou_threshold,
                "det_size": list(self.tracker.det_size),
                "use_gpu": self.tracker.use_gpu,
            },
            "prompt_reason": self.prompt_reason,
            "reentry_policy": self.reentry_policy.value,
        }


# =============================================================================
# DEFAULT CONFIGS
# =============================================================================

# Tolerates a second face in frame (shared screens, pair work)
PERMISSIVE_CONFIG = LockConfig(
    presence=PresenceConfig(policy=PresencePolicy.AT_LEAST_ONE),
)

# Drops faces sooner and re-challenges on every start()
STRICT_CONFIG = LockConfig(
    presence=PresenceConfig(confidence_threshold=0.5),
    tracker=TrackerConfig(detection_threshold=0.6, iou_threshold=0.4),
    reentry_policy=ReentryPolicy.RESTART,
)

# CPU only, small model
LOW_RESOURCE_CONFIG = LockConfig(
    capture=CaptureConfig(candidate_resolutions=((1280, 720), (640, 480))),
    tracker=TrackerConfig(det_size=(320, 320), use_gpu=False),
)
