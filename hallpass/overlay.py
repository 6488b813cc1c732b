"""
Overlay Rendering Module

Draws detection results on camera frames and shows them in a preview
window. Matched faces are boxed in green with the person's name, unmatched
faces in red.
"""

import logging
from typing import Callable, List, Optional

import cv2
import numpy as np

from .detection import FaceOutcome, FrameResult

logger = logging.getLogger(__name__)

MATCH_COLOR = (0, 255, 0)
NO_MATCH_COLOR = (0, 0, 255)
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.6
FONT_THICKNESS = 2
QUIT_KEYS = (ord('q'), 27)


def annotate_frame(frame: np.ndarray, faces: List[FaceOutcome],
                   pass_type: Optional[str] = None) -> np.ndarray:
    """
    Annotate frame with per-face match outcomes.

    Args:
        frame: Input frame
        faces: Outcomes from one detection cycle
        pass_type: Requested pass, drawn in the top-left corner

    Returns:
        Annotated copy of the frame
    """
    annotated_frame = frame.copy()

    for face in faces:
        box = face.bounding_box
        color = MATCH_COLOR if face.matched else NO_MATCH_COLOR

        cv2.rectangle(annotated_frame, (box.x, box.y),
                      (box.x + box.width, box.y + box.height), color, 3)

        if face.matched and face.name:
            label_size = cv2.getTextSize(face.name, FONT, FONT_SCALE, FONT_THICKNESS)[0]
            cv2.rectangle(annotated_frame,
                          (box.x, box.y - label_size[1] - 10),
                          (box.x + label_size[0], box.y),
                          color, -1)
            cv2.putText(annotated_frame, face.name, (box.x, box.y - 5),
                        FONT, FONT_SCALE, (255, 255, 255), FONT_THICKNESS)

    if pass_type:
        cv2.putText(annotated_frame, f"Selected Pass: {pass_type}", (10, 30),
                    FONT, FONT_SCALE, (255, 255, 255), FONT_THICKNESS)

    return annotated_frame


class PreviewWindow:
    """Rendering callback that shows annotated frames in an OpenCV window."""

    def __init__(self, title: str = 'Hall Pass', pass_type: Optional[str] = None,
                 on_quit: Optional[Callable[[], None]] = None):
        """
        Initialize preview window.

        Args:
            title: Window title
            pass_type: Requested pass, drawn on every frame
            on_quit: Called when q or Esc is pressed in the window
        """
        self.title = title
        self.pass_type = pass_type
        self.on_quit = on_quit

    def __call__(self, result: FrameResult) -> None:
        if result.frame is None:
            return
        if result.match is not None:
            self.show_message(result.frame.shape, [
                "Pass Granted!",
                result.match.profile.display_name,
                f"-> {self.pass_type}",
                "Returning to home screen..."
            ])
            return
        cv2.imshow(self.title, annotate_frame(result.frame, result.faces, self.pass_type))
        self._poll_keys()

    def show_message(self, frame_shape, lines: List[str], color=(0, 128, 0)) -> None:
        """Show a full-window status panel, e.g. the granted pass."""
        height, width = frame_shape[:2]
        panel = np.zeros((height, width, 3), dtype=np.uint8)
        panel[:] = color
        y = height // 3
        for line in lines:
            text_size = cv2.getTextSize(line, FONT, 1.0, FONT_THICKNESS)[0]
            cv2.putText(panel, line, ((width - text_size[0]) // 2, y),
                        FONT, 1.0, (255, 255, 255), FONT_THICKNESS)
            y += text_size[1] + 20
        cv2.imshow(self.title, panel)
        self._poll_keys()

    def _poll_keys(self) -> None:
        key = cv2.waitKey(1) & 0xFF
        if key in QUIT_KEYS and self.on_quit is not None:
            logger.info("Quit requested from preview window")
            self.on_quit()

    def close(self) -> None:
        try:
            cv2.destroyWindow(self.title)
        except cv2.error:
            logger.debug(f"Window {self.title} was not open")
