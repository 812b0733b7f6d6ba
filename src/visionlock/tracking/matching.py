#!/usr/bin/env python3
"""
IoU matching between prior face regions and fresh detections.

Used by detector-backed trackers to carry a face_id from one frame to the
next. Only prior regions are followed: a detection that overlaps nothing
is a new face and is left for the next detection pass.
"""

from typing import Dict, Sequence

import numpy as np

from ..core.models import BoundingBox


def compute_iou_matrix(
    prior_boxes: Sequence[BoundingBox],
    detection_boxes: Sequence[BoundingBox]
) -> np.ndarray:
    """
    IoU of every prior region against every detection.

    Returns:
        Matrix of shape (len(prior_boxes), len(detection_boxes))
    """
    iou_matrix = np.zeros((len(prior_boxes), len(detection_boxes)))

    for p, prior in enumerate(prior_boxes):
        for d, detected in enumerate(detection_boxes):
            iou_matrix[p, d] = prior.iou(detected)

    return iou_matrix


def match_faces(
    prior_boxes: Sequence[BoundingBox],
    detection_boxes: Sequence[BoundingBox],
    threshold: float
) -> Dict[int, int]:
    """
    Pair each prior region with at most one detection.

    Highest overlap claims first. Equal overlaps go to the face seen
    earliest (lower prior index), so a face_id never flips between two
    people standing at the same distance.

    Args:
        prior_boxes: Regions from the previous cycle, in tracking order
        detection_boxes: Regions found in the current frame
        threshold: Minimum IoU for a detection to continue a face

    Returns:
        prior index -> detection index; priors missing from the dict were lost
    """
    iou = compute_iou_matrix(prior_boxes, detection_boxes)
    candidates = sorted(
        (
            (-iou[p, d], p, d)
            for p in range(iou.shape[0])
            for d in range(iou.shape[1])
            if iou[p, d] >= threshold and iou[p, d] > 0.0
        )
    )

    matched: Dict[int, int] = {}
    claimed = set()
    for _, p, d in candidates:
        if p in matched or d in claimed:
            continue
        matched[p] = d
        claimed.add(d)

    return matched
