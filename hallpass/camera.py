"""
Video Source Module

OpenCV capture wrapper used as the detection loop's frame source. The
capture handle is released exactly once no matter how often stop() is called.
"""

import logging
import threading
from typing import Any, Dict, Optional, Union

import cv2
import numpy as np

from .errors import ResourceError

logger = logging.getLogger(__name__)


class CameraSource:
    """Live camera or video file frame source."""

    def __init__(self, source: Union[int, str], config: Dict[str, Any]):
        """
        Initialize video source.

        Args:
            source: Camera device ID or video file path
            config: Configuration dictionary with video settings
        """
        self.source = source
        self.video_config = config.get('video', {})
        self.frame_width = self.video_config.get('frame_width', 640)
        self.frame_height = self.video_config.get('frame_height', 480)
        self.fps = self.video_config.get('fps_limit', 30)

        self.cap = None
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def is_open(self) -> bool:
        return self.cap is not None and not self._stopped

    def open(self) -> 'CameraSource':
        """
        Acquire the capture device.

        Returns:
            This source, ready to read

        Raises:
            ResourceError: If the camera or file cannot be opened
        """
        try:
            self.cap = cv2.VideoCapture(self.source)
        except cv2.error as e:
            raise ResourceError(f"Failed to open video source {self.source}: {e}") from e

        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise ResourceError(f"Failed to open video source {self.source}")

        if isinstance(self.source, int):
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
            self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        logger.info(f"Video source {self.source} opened")
        return self

    def read(self) -> Optional[np.ndarray]:
        """Read one frame, or None if no frame is available."""
        with self._lock:
            if not self.is_open:
                return None
            ret, frame = self.cap.read()
        if not ret:
            return None
        return frame

    def stop(self) -> None:
        """Release the capture device. Safe to call more than once."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            if self.cap is not None:
                self.cap.release()
        logger.info(f"Video source {self.source} released")

    def __enter__(self) -> 'CameraSource':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def open_video_source(config: Dict[str, Any], video_path: Optional[str] = None,
                      camera_id: Optional[int] = None) -> CameraSource:
    """Open the configured camera, or a video file when a path is given."""
    if video_path:
        source: Union[int, str] = video_path
    elif camera_id is not None:
        source = camera_id
    else:
        source = config.get('video', {}).get('camera_id', 0)
    return CameraSource(source, config).open()
