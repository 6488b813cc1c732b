"""
Descriptor Extraction Module

Wraps the face_recognition library (dlib HOG/CNN locator and ResNet
encoder) behind an asynchronous detect() call. The blocking model call runs
in the default thread pool so the detection loop never stalls the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import cv2
import face_recognition
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """Face bounding box in pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_css(cls, location) -> 'BoundingBox':
        """Build a box from a face_recognition (top, right, bottom, left) tuple."""
        top, right, bottom, left = location
        return cls(x=int(left), y=int(top),
                   width=int(right - left), height=int(bottom - top))


@dataclass
class DetectedFace:
    """One face found in a frame, with its descriptor."""

    bounding_box: BoundingBox
    descriptor: np.ndarray


class FaceDescriptorExtractor:
    """Detect faces and compute 128-d descriptors for a BGR frame."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize descriptor extractor.

        Args:
            config: Configuration dictionary with embedding settings
        """
        self.config = config.get('embedding', {})
        self.detection_model = self.config.get('detection_model', 'hog')
        self.upsample_times = self.config.get('upsample_times', 1)
        self.num_jitters = self.config.get('num_jitters', 1)
        self.embedding_size = self.config.get('embedding_size', 128)

        if self.detection_model not in ('hog', 'cnn'):
            logger.warning(f"Unsupported detection model: {self.detection_model}, falling back to hog")
            self.detection_model = 'hog'

        logger.info(f"Descriptor extractor initialized with model: {self.detection_model}")

    def detect_sync(self, image: Optional[np.ndarray]) -> List[DetectedFace]:
        """
        Detect faces and compute their descriptors.

        Args:
            image: Input image as numpy array (BGR format)

        Returns:
            Detected faces in the order the locator reports them
        """
        if image is None or image.size == 0:
            return []

        # face_recognition expects RGB
        if image.ndim == 3:
            rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        else:
            rgb_image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)

        locations = face_recognition.face_locations(
            rgb_image,
            number_of_times_to_upsample=self.upsample_times,
            model=self.detection_model
        )
        if not locations:
            return []

        encodings = face_recognition.face_encodings(
            rgb_image,
            known_face_locations=locations,
            num_jitters=self.num_jitters
        )

        faces = []
        for location, encoding in zip(locations, encodings):
            faces.append(DetectedFace(
                bounding_box=BoundingBox.from_css(location),
                descriptor=np.asarray(encoding, dtype=np.float64)
            ))

        logger.debug(f"Detected {len(faces)} face(s)")
        return faces

    async def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        """Asynchronous detect_sync; the model runs in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.detect_sync, frame)
