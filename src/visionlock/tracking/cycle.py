#!/usr/bin/env python3
"""
Tracking cycle: one frame through detect/track.

  no tracking requests → FaceTracker.detect(frame), seed requests
  otherwise            → FaceTracker.track(frame, requests)

Only one frame is ever in flight. A frame offered while the previous one
is still being tracked or aggregated is dropped, not queued.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List

from ..core.errors import TrackingError
from ..core.models import Frame, TrackedFace
from ..core.protocols import FaceTracker

logger = logging.getLogger(__name__)

# Receives a cycle's observations plus the callback that frees the cycle
ObservationSink = Callable[[Frame, List[TrackedFace], Callable[[], None]], None]


@dataclass
class CycleStats:
    """Per-session frame counters."""
    frames_offered: int = 0
    frames_processed: int = 0
    frames_dropped: int = 0
    frames_failed: int = 0
    detect_cycles: int = 0
    track_cycles: int = 0


class TrackingCycle:
    """
    Per-session detect/track loop.

    Created when a Monitoring session starts, closed when it ends, so
    tracking requests never leak from one session into the next.
    """

    def __init__(
        self,
        tracker: FaceTracker,
        sink: ObservationSink,
        confidence_threshold: float = 0.3,
        name: str = "visionlock-track"
    ):
        """
        Args:
            tracker: Face detection/tracking capability
            sink: Where observations go; must call the release callback
                once they have been aggregated
            confidence_threshold: Below this a face is terminal
            name: Worker thread name prefix
        """
        self.tracker = tracker
        self._sink = sink
        self._threshold = confidence_threshold
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

        self._requests: List[TrackedFace] = []
        self._busy = threading.Lock()
        self._closed = False
        self.stats = CycleStats()

    @property
    def tracking_requests(self) -> List[TrackedFace]:
        return list(self._requests)

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    def offer(self, frame: Frame) -> bool:
        """
        Hand a frame to the cycle. Called on the capture thread.

        Returns:
            True if the frame was accepted, False if dropped
        """
        self.stats.frames_offered += 1
        if self._closed or not self._busy.acquire(blocking=False):
            self.stats.frames_dropped += 1
            return False

        try:
            self._executor.submit(self._run, frame)
        except RuntimeError:
            # Executor shut down between the check and the submit
            self._busy.release()
            self.stats.frames_dropped += 1
            return False
        return True

    def step(self, frame: Frame) -> List[TrackedFace]:
        """
        Run detect or track for one frame, synchronously.

        Returns:
            This cycle's observations, low-confidence faces marked terminal

        Raises:
            TrackingError: malformed frame or tracker failure
        """
        if frame is None or not frame.is_valid:
            raise TrackingError("malformed frame buffer", getattr(frame, "sequence", None))

        try:
            if not self._requests:
                faces = self.tracker.detect(frame)
                self.stats.detect_cycles += 1
            else:
                faces = self.tracker.track(frame, list(self._requests))
                self.stats.track_cycles += 1
        except TrackingError:
            raise
        except Exception as e:
            raise TrackingError(f"tracker failed: {e}", frame.sequence) from e

        observations = []
        requests = []
        for face in faces:
            if face.is_alive(self._threshold):
                requests.append(face)
                observations.append(face)
            else:
                observations.append(face.as_terminal())

        self._requests = requests
        self.stats.frames_processed += 1
        return observations

    def _run(self, frame: Frame) -> None:
        try:
            observations = self.step(frame)
        except TrackingError as e:
            self.stats.frames_failed += 1
            logger.warning(f"Skipping frame {frame.sequence if frame else '?'}: {e}")
            self._release()
            return

        try:
            self._sink(frame, observations, self._release)
        except Exception as e:
            logger.error(f"Observation sink error: {e}")
            self._release()

    def _release(self) -> None:
        if self._busy.locked():
            self._busy.release()

    def reset(self) -> None:
        """Drop all tracking requests; next frame runs detection."""
        self._requests = []

    def close(self) -> None:
        """Stop accepting frames and wait for the in-flight one to finish."""
        self._closed = True
        self._executor.shutdown(wait=True)
        self._requests = []

    def get_status(self) -> dict:
        return {
            "tracking": len(self._requests),
            "busy": self.is_busy,
            "processed": self.stats.frames_processed,
            "dropped": self.stats.frames_dropped,
            "failed": self.stats.frames_failed,
        }
