"""
Detection Loop Module

Cooperative polling of a video source: each cycle reads one frame, awaits
the descriptor extractor, matches every detected face against the enrolled
profiles and reports the outcome. The first accepted match ends the loop.

Only one cycle, and so only one extractor request, is ever in flight. A
cycle whose token was cancelled while it was suspended drops its result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import FrameCycleError, ResourceError
from .extractor import BoundingBox, DetectedFace
from .matcher import MatchResult, find_best_match
from .profiles import ReferenceProfile

logger = logging.getLogger(__name__)


class LoopState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'
    MATCHED = 'matched'


class CancellationToken:
    """One-way flag shared between the loop and its pending cycle."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class FaceOutcome:
    """Per-face result used for overlay rendering."""

    bounding_box: BoundingBox
    matched: bool
    name: Optional[str] = None
    distance: Optional[float] = None


@dataclass
class FrameResult:
    """Everything one detection cycle produced."""

    faces: List[FaceOutcome] = field(default_factory=list)
    match: Optional[MatchResult] = None
    frame: Optional[np.ndarray] = None
    error: Optional[FrameCycleError] = None


def evaluate_faces(faces: Sequence[DetectedFace],
                   profiles: Sequence[ReferenceProfile],
                   threshold: float) -> Tuple[List[FaceOutcome], Optional[MatchResult]]:
    """
    Match every detected face of a frame.

    Args:
        faces: Detected faces in detection order
        profiles: Enrolled profiles
        threshold: Acceptance threshold

    Returns:
        Outcomes for all faces, and the first accepted match in detection order
    """
    outcomes = []
    first_match = None
    for face in faces:
        match = find_best_match(face.descriptor, profiles, threshold)
        if match is None:
            outcomes.append(FaceOutcome(bounding_box=face.bounding_box, matched=False))
            continue
        outcomes.append(FaceOutcome(
            bounding_box=face.bounding_box,
            matched=True,
            name=match.profile.display_name,
            distance=match.distance
        ))
        if first_match is None:
            first_match = match
    return outcomes, first_match


def _discard_result(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class DetectionLoop:
    """Frame-driven detect and match loop for one session."""

    def __init__(self, extractor, config: Dict[str, Any]):
        """
        Initialize detection loop.

        Args:
            extractor: Descriptor extractor with an async detect(frame) method
            config: Configuration dictionary
        """
        self.extractor = extractor
        self.threshold = config.get('recognition', {}).get('accept_threshold', 0.6)

        detection_config = config.get('detection', {})
        self.cycle_timeout = detection_config.get('cycle_timeout', 10.0)
        self.max_read_failures = detection_config.get('max_read_failures', 30)

        fps_limit = config.get('video', {}).get('fps_limit', 30)
        self.frame_interval = 1.0 / fps_limit if fps_limit and fps_limit > 0 else 0.0

        self.state = LoopState.IDLE
        self.cycles = 0
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._pending: Optional[asyncio.Future] = None
        self._video_source = None
        self._released = False

    @property
    def running(self) -> bool:
        return self.state is LoopState.RUNNING

    def start(self, video_source, profiles: Sequence[ReferenceProfile],
              on_match: Callable[[MatchResult], None],
              on_frame_result: Optional[Callable[[FrameResult], None]] = None) -> asyncio.Task:
        """
        Start polling the video source. Must be called from a running event loop.

        Args:
            video_source: Frame source with read() and stop()
            profiles: Enrolled profiles to match against
            on_match: Called once with the first accepted match
            on_frame_result: Called after every processed frame

        Returns:
            The task running the loop
        """
        if self.state is not LoopState.IDLE:
            raise RuntimeError(f"Detection loop cannot start from state {self.state.value}")

        self.state = LoopState.RUNNING
        self._video_source = video_source
        self._token = CancellationToken()
        self._task = asyncio.ensure_future(
            self._run(video_source, tuple(profiles), on_match, on_frame_result, self._token))
        logger.info(f"Detection loop started with {len(profiles)} profile(s)")
        return self._task

    def stop(self) -> None:
        """Cancel pending work and release the video source. Idempotent."""
        if self._token is not None:
            self._token.cancel()
        if self.state is LoopState.RUNNING:
            self.state = LoopState.STOPPED
            logger.info("Detection loop stopped")

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        self._release_source()

    async def wait(self) -> LoopState:
        """Wait for the loop task to finish and return the final state."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.state

    async def _run(self, video_source, profiles, on_match, on_frame_result,
                   token: CancellationToken) -> None:
        loop = asyncio.get_running_loop()
        read_failures = 0
        try:
            while not token.cancelled:
                cycle_start = loop.time()

                frame = await self._read_frame(video_source)
                if token.cancelled:
                    break
                if frame is None:
                    read_failures += 1
                    if read_failures >= self.max_read_failures:
                        raise ResourceError(f"No frames from video source after {read_failures} attempts")
                    logger.warning("Failed to read frame")
                    await asyncio.sleep(self.frame_interval)
                    continue
                read_failures = 0

                result = await self._process_frame(frame, profiles)
                if token.cancelled:
                    logger.debug("Discarding result of a cancelled cycle")
                    break
                self.cycles += 1

                if on_frame_result is not None:
                    try:
                        on_frame_result(result)
                    except Exception as e:
                        logger.error(f"Frame result callback failed: {e}")

                if result.match is not None:
                    self.state = LoopState.MATCHED
                    logger.info(f"Match found: {result.match.profile.display_name} "
                                f"(distance {result.match.distance:.3f})")
                    on_match(result.match)
                    break

                elapsed = loop.time() - cycle_start
                await asyncio.sleep(max(0.0, self.frame_interval - elapsed))
        except ResourceError as e:
            logger.error(f"Detection loop aborted: {e}")
            raise
        finally:
            if self.state is LoopState.RUNNING:
                self.state = LoopState.STOPPED
            self._release_source()

    async def _read_frame(self, video_source) -> Optional[np.ndarray]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, video_source.read)
        except Exception as e:
            logger.warning(f"Frame read error: {e}")
            return None

    async def _process_frame(self, frame: np.ndarray,
                             profiles: Sequence[ReferenceProfile]) -> FrameResult:
        if self._pending is not None and not self._pending.done():
            logger.debug("Previous extractor request still outstanding, skipping frame")
            return FrameResult(frame=frame)

        try:
            faces = await self._extract(frame)
            outcomes, match = evaluate_faces(faces, profiles, self.threshold)
        except FrameCycleError as e:
            logger.warning(f"Detection cycle failed: {e}")
            return FrameResult(frame=frame, error=e)
        except ValueError as e:
            logger.warning(f"Detection cycle failed: {e}")
            return FrameResult(frame=frame, error=FrameCycleError(str(e)))

        return FrameResult(faces=outcomes, match=match, frame=frame)

    async def _extract(self, frame: np.ndarray) -> List[DetectedFace]:
        pending = asyncio.ensure_future(self.extractor.detect(frame))
        self._pending = pending
        try:
            done, _ = await asyncio.wait({pending}, timeout=self.cycle_timeout)
        except asyncio.CancelledError:
            pending.cancel()
            raise

        if not done:
            # Left running so no second request is issued on top of it
            pending.add_done_callback(_discard_result)
            raise FrameCycleError(f"Extractor did not respond within {self.cycle_timeout}s")

        self._pending = None
        if pending.cancelled():
            raise FrameCycleError("Extractor request was cancelled")
        try:
            return list(pending.result())
        except Exception as e:
            raise FrameCycleError(f"Extractor failed: {e}") from e

    def _release_source(self) -> None:
        if self._released or self._video_source is None:
            return
        self._released = True
        try:
            self._video_source.stop()
        except Exception as e:
            logger.error(f"Failed to release video source: {e}")


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
