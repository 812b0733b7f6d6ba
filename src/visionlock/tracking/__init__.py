#!/usr/bin/env python3
"""
Face tracking module for VisionLock.

Provides the per-frame detect/track cycle and IoU matching helpers.
"""

from .cycle import TrackingCycle, CycleStats
from .matching import compute_iou_matrix, match_faces

__all__ = [
    "TrackingCycle",
    "CycleStats",
    "compute_iou_matrix",
    "match_faces",
]
