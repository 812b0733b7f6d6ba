# Face Detection/Tracking Module
from .insightface_tracker import InsightFaceTracker

__all__ = ["InsightFaceTracker"]
