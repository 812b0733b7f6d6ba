#!/usr/bin/env python3
"""
Camera capture via OpenCV.

Acquisition order matters. The active format can only change while the
configuration is locked and before streaming starts:

  select device → lock → pick highest-resolution 4:2:0 format → unlock
                → attach frame callback → start streaming

Streaming runs on its own thread and keeps a one-frame device buffer, so
late frames are discarded by the driver instead of piling up.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterable, List, Optional

import cv2
import numpy as np

from ..core.config import CaptureConfig
from ..core.errors import DeviceError
from ..core.models import Frame, VideoFormat
from ..core.protocols import FrameCallback, StreamEndCallback

logger = logging.getLogger(__name__)

# Chroma subsampling of the pixel formats webcams commonly offer
CHROMA_BY_FOURCC = {
    "NV12": "420",
    "I420": "420",
    "YV12": "420",
    "MJPG": "420",   # Baseline JPEG from UVC cameras
    "YUYV": "422",
    "YUY2": "422",
    "UYVY": "422",
}


def fourcc_to_str(code: float) -> str:
    """Decode CAP_PROP_FOURCC into its four characters."""
    value = int(code)
    return "".join(chr((value >> (8 * i)) & 0xFF) for i in range(4)).strip("\x00")


def select_highest_420_format(
    formats: Iterable[VideoFormat],
    chroma_subsampling: str = "420"
) -> Optional[VideoFormat]:
    """
    Pick the largest format with the wanted chroma subsampling.

    Width decides first, then height. Returns None if nothing matches.
    """
    best = None
    for fmt in formats:
        if fmt.chroma_subsampling != chroma_subsampling:
            continue
        if best is None or (fmt.width, fmt.height) > (best.width, best.height):
            best = fmt
    return best


# =============================================================================
# DEVICE
# =============================================================================

class OpenCVCamera:
    """A single capture device with an explicit configuration lock."""

    def __init__(
        self,
        device: int = 0,
        capture_factory: Callable[[int], "cv2.VideoCapture"] = cv2.VideoCapture
    ):
        self.device = device
        self._factory = capture_factory
        self.cap = None
        self.active_format: Optional[VideoFormat] = None
        self._config_lock = threading.Lock()
        self._configuring = False
        self._streaming = False

    def open(self) -> "OpenCVCamera":
        self.cap = self._factory(self.device)
        if self.cap is None or not self.cap.isOpened():
            self.release()
            raise DeviceError(f"Could not open camera {self.device}")
        return self

    @contextmanager
    def configuration(self):
        """Hold the configuration lock. Not allowed once streaming."""
        if self._streaming:
            raise DeviceError("Cannot change configuration while streaming")
        with self._config_lock:
            self._configuring = True
            try:
                yield self
            finally:
                self._configuring = False

    def _require_configuring(self) -> None:
        if not self._configuring:
            raise DeviceError("Configuration is not locked")
        if self._streaming:
            raise DeviceError("Cannot change format after streaming started")

    def query_formats(
        self,
        fourccs: Iterable[str],
        resolutions: Iterable[tuple]
    ) -> List[VideoFormat]:
        """
        Ask the driver which (fourcc, resolution) pairs it actually accepts.

        OpenCV has no format enumeration, so each candidate is set and the
        values the driver settled on are read back.
        """
        self._require_configuring()
        resolutions = list(resolutions)
        found = {}

        for fourcc in fourccs:
            if not self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*fourcc)):
                continue
            actual = fourcc_to_str(self.cap.get(cv2.CAP_PROP_FOURCC)) or fourcc
            chroma = CHROMA_BY_FOURCC.get(actual.upper())
            if chroma is None:
                continue

            for width, height in resolutions:
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
                w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
                h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
                if w > 0 and h > 0:
                    found[(actual, w, h)] = VideoFormat(w, h, actual, chroma)

        return list(found.values())

    def set_active_format(self, fmt: VideoFormat) -> None:
        self._require_configuring()
        self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*fmt.fourcc))
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, fmt.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, fmt.height)
        self.active_format = fmt

    def set_buffer_size(self, frames: int) -> None:
        self._require_configuring()
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, frames)

    def mark_streaming(self) -> None:
        self._streaming = True

    def read(self) -> tuple:
        """Capture a frame. Returns (success, image)."""
        return self.cap.read()

    def release(self) -> None:
        self._streaming = False
        if self.cap is not None:
            self.cap.release()
            self.cap = None


# =============================================================================
# STREAM
# =============================================================================

class OpenCVCaptureSession:
    """Frame stream running on a dedicated reader thread."""

    def __init__(
        self,
        camera: OpenCVCamera,
        on_frame: FrameCallback,
        max_read_failures: int = 10,
        on_stream_end: Optional[StreamEndCallback] = None,
        intrinsics: Optional[np.ndarray] = None
    ):
        self.camera = camera
        self._on_frame = on_frame
        self._on_stream_end = on_stream_end
        self._max_read_failures = max_read_failures
        self._intrinsics = intrinsics
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.frames_delivered = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start_streaming(self) -> None:
        self.camera.mark_streaming()
        self._thread = threading.Thread(
            target=self._read_loop,
            name=f"visionlock-capture-{self.camera.device}",
            daemon=True
        )
        self._thread.start()

    def _read_loop(self) -> None:
        failures = 0
        sequence = 0

        while not self._stop.is_set():
            ret, image = self.camera.read()
            if not ret:
                failures += 1
                logger.warning(f"Could not read frame (error {failures}/{self._max_read_failures})")
                if failures >= self._max_read_failures:
                    logger.error("Max camera errors reached, stopping stream")
                    self._stream_ended(f"{failures} consecutive failed reads")
                    break
                continue

            failures = 0
            sequence += 1
            frame = Frame(
                image=image,
                timestamp=time.time(),
                sequence=sequence,
                intrinsics=self._intrinsics
            )

            try:
                self._on_frame(frame)
                self.frames_delivered += 1
            except Exception as e:
                logger.error(f"Frame callback error: {e}")

    def _stream_ended(self, reason: str) -> None:
        if self._stop.is_set() or self._on_stream_end is None:
            return
        try:
            self._on_stream_end(reason)
        except Exception as e:
            logger.error(f"Stream end callback error: {e}")

    def stop(self) -> None:
        """Stop the reader thread and release the device."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self.camera.release()
        logger.debug(f"Camera {self.camera.device} released after {self.frames_delivered} frames")


class OpenCVFrameSource:
    """FrameSource backed by cv2.VideoCapture."""

    def __init__(self, capture_factory: Callable[[int], "cv2.VideoCapture"] = cv2.VideoCapture):
        self._factory = capture_factory

    def start(
        self,
        config: CaptureConfig,
        on_frame: FrameCallback,
        on_stream_end: Optional[StreamEndCallback] = None
    ) -> OpenCVCaptureSession:
        camera = OpenCVCamera(config.device_index, self._factory)
        camera.open()
        logger.info(f"Opened {config.position.value} camera {config.device_index}")

        try:
            with camera.configuration():
                formats = camera.query_formats(config.fourccs, config.candidate_resolutions)
                fmt = select_highest_420_format(formats, config.chroma_subsampling)
                if fmt is not None:
                    camera.set_active_format(fmt)
                    logger.info(f"Format {fmt.fourcc} {fmt.width}x{fmt.height}")
                else:
                    logger.warning(
                        f"No {config.chroma_subsampling} format on camera {config.device_index}, "
                        f"keeping device default"
                    )
                if config.discard_late_frames:
                    camera.set_buffer_size(1)

            intrinsics = None
            if config.camera_matrix is not None:
                intrinsics = np.array(config.camera_matrix, dtype=np.float64)
            session = OpenCVCaptureSession(
                camera, on_frame, config.max_read_failures, on_stream_end, intrinsics
            )
            session.start_streaming()
        except Exception:
            camera.release()
            raise

        return session
