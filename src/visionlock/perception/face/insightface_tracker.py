#!/usr/bin/env python3
"""
Face Tracker - InsightFace
==========================
InsightFace for face detection, IoU matching for tracking.

detect() seeds one TrackedFace per face found. track() only follows the
faces it was given: each prior region keeps its face_id if a detection
overlaps it, otherwise it comes back with zero confidence and the cycle
marks it terminal. New faces entering mid-session are not picked up until
tracking runs dry and detection runs again.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from ...core.config import TrackerConfig
from ...core.models import BoundingBox, Frame, TrackedFace
from ...tracking.matching import match_faces

logger = logging.getLogger(__name__)


class InsightFaceTracker:
    """FaceTracker backed by insightface.app.FaceAnalysis."""

    def __init__(self, config: Optional[TrackerConfig] = None, app=None):
        """
        Initialize tracker.

        Args:
            config: Tracker configuration
            app: Prepared FaceAnalysis-like object with get(image); built
                from config when omitted
        """
        self.config = config or TrackerConfig()

        if app is None:
            from insightface.app import FaceAnalysis

            providers = ['CUDAExecutionProvider', 'CPUExecutionProvider'] if self.config.use_gpu else ['CPUExecutionProvider']
            app = FaceAnalysis(
                name=self.config.model_name,
                allowed_modules=['detection'],
                providers=providers
            )
            ctx_id = 0 if self.config.use_gpu else -1
            app.prepare(ctx_id=ctx_id, det_thresh=self.config.detection_threshold, det_size=self.config.det_size)

        self.app = app
        self._faces_seen = 0

    def _new_face_id(self) -> str:
        self._faces_seen += 1
        return f"face_{uuid.uuid4().hex[:8]}_{self._faces_seen}"

    def _detect_boxes(self, frame: Frame) -> List[Tuple[BoundingBox, float]]:
        results = []
        for face in self.app.get(frame.image):
            bbox = face.bbox.astype(int)
            box = BoundingBox(int(bbox[0]), int(bbox[1]), int(bbox[2]), int(bbox[3]))
            score = min(max(float(face.det_score), 0.0), 1.0)
            results.append((box, score))
        return results

    def detect(self, frame: Frame) -> List[TrackedFace]:
        return [
            TrackedFace(face_id=self._new_face_id(), box=box, confidence=score)
            for box, score in self._detect_boxes(frame)
        ]

    def track(self, frame: Frame, prior: List[TrackedFace]) -> List[TrackedFace]:
        detections = self._detect_boxes(frame)
        matched = match_faces(
            [face.box for face in prior],
            [box for box, _ in detections],
            self.config.iou_threshold
        )

        updated = []
        for prior_idx, face in enumerate(prior):
            if prior_idx in matched:
                box, score = detections[matched[prior_idx]]
                updated.append(TrackedFace(face.face_id, box, score))
            else:
                logger.debug(f"Lost {face.face_id}")
                updated.append(TrackedFace(face.face_id, face.box, 0.0))

        return updated

    def reset(self) -> None:
        self._faces_seen = 0
