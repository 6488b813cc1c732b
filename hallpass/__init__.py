"""
Hall Pass Face Recognition

Grants hall passes by matching a live camera feed against enrolled
student photos. A pass session polls the camera, matches every detected
face against the enrolled profiles and grants the pass exactly once.
"""

__version__ = "1.0.0"
__author__ = "Hall Pass Team"

from .profiles import ProfileStore, ProfileDirectory, ReferenceProfile
from .matcher import MatchResult, find_best_match
from .detection import DetectionLoop, FrameResult, FaceOutcome
from .session import PassSession, Session, SessionState

__all__ = [
    "ProfileStore",
    "ProfileDirectory",
    "ReferenceProfile",
    "MatchResult",
    "find_best_match",
    "DetectionLoop",
    "FrameResult",
    "FaceOutcome",
    "PassSession",
    "Session",
    "SessionState"
]
