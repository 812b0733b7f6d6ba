#!/usr/bin/env python3
"""
Camera capture module for VisionLock.
"""

from .camera import (
    OpenCVCamera,
    OpenCVCaptureSession,
    OpenCVFrameSource,
    fourcc_to_str,
    select_highest_420_format,
)

__all__ = [
    "OpenCVCamera",
    "OpenCVCaptureSession",
    "OpenCVFrameSource",
    "fourcc_to_str",
    "select_highest_420_format",
]
