"""
Pass Session Module

State machine for one pass request, from choosing a pass type to either a
granted pass or the user walking away:

    NEW -> AWAITING_MATCH -> GRANTED -> RETURNING
                \\-> ABANDONED

The grant transition is one-shot. Once granted, the detection loop is
stopped, the camera is released, the pass is reported to the notification
sink in the background and, after the dwell time, the session completes.
"""

import asyncio
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .detection import DetectionLoop, FrameResult
from .errors import NoIdentitiesEnrolledError, NotificationError, ResourceError
from .matcher import MatchResult
from .notifier import PassEvent
from .profiles import ProfileStore, ReferenceProfile

logger = logging.getLogger(__name__)


class SessionState(Enum):
    NEW = 'new'
    AWAITING_MATCH = 'awaiting_match'
    GRANTED = 'granted'
    RETURNING = 'returning'
    ABANDONED = 'abandoned'


@dataclass
class Session:
    """Record of one pass request."""

    requested_pass_type: str
    state: SessionState = SessionState.NEW
    granted_at: Optional[datetime] = None
    granted_identity: Optional[ReferenceProfile] = None
    confidence: Optional[float] = None

    @property
    def granted(self) -> bool:
        return self.granted_identity is not None

    @property
    def confidence_text(self) -> Optional[str]:
        if self.confidence is None:
            return None
        return f"{self.confidence:.1f}"


def format_pass_time(moment: datetime) -> str:
    """Format a grant time as hours without a leading zero, e.g. 2:07:09 PM."""
    return moment.strftime('%I:%M:%S %p').lstrip('0')


def _stop_acquired_source(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning(f"Video source failed to open after cancellation: {error}")
        return
    future.result().stop()


class PassSession:
    """Runs the detect, match, grant and return lifecycle of one session."""

    def __init__(self, pass_type: str, store: ProfileStore, detection_loop: DetectionLoop,
                 video_source_factory: Callable[[], Any], notifier, config: Dict[str, Any],
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize a pass session.

        Args:
            pass_type: Requested pass, e.g. "Bathroom"
            store: Loaded profile store
            detection_loop: Fresh (idle) detection loop
            video_source_factory: Opens the video source, raising ResourceError on failure
            notifier: Sink with a notify(PassEvent) method
            config: Configuration dictionary with session settings
            clock: Source of the grant timestamp
        """
        self.session = Session(requested_pass_type=pass_type)
        self.store = store
        self.detection_loop = detection_loop
        self.video_source_factory = video_source_factory
        self.notifier = notifier
        self.clock = clock
        self.dwell_seconds = config.get('session', {}).get('dwell_seconds', 3.0)

        self.notification: Optional[asyncio.Future] = None
        self._done: Optional[asyncio.Future] = None
        self._dwell_handle: Optional[asyncio.TimerHandle] = None
        self._store_hold = ExitStack()

    @property
    def state(self) -> SessionState:
        return self.session.state

    async def start(self, on_frame_result: Optional[Callable[[FrameResult], None]] = None) -> None:
        """
        Open the video source and start detection.

        Raises:
            NoIdentitiesEnrolledError: If no profiles are loaded
            ResourceError: If the video source cannot be opened
        """
        if self.session.state is not SessionState.NEW:
            raise RuntimeError(f"Session already started ({self.session.state.value})")

        if self.store.is_empty:
            logger.warning(f"Refusing {self.session.requested_pass_type} pass: no identities enrolled")
            raise NoIdentitiesEnrolledError()

        loop = asyncio.get_running_loop()
        self._done = loop.create_future()

        acquire = loop.run_in_executor(None, self.video_source_factory)
        try:
            video_source = await asyncio.shield(acquire)
        except asyncio.CancelledError:
            # The factory keeps running in its thread; release whatever it opens
            acquire.add_done_callback(_stop_acquired_source)
            self.session.state = SessionState.ABANDONED
            logger.info(f"Session for {self.session.requested_pass_type} pass cancelled "
                        "while opening the video source")
            self._resolve()
            raise
        except ResourceError as e:
            logger.error(f"Cannot start session: {e}")
            self.session.state = SessionState.ABANDONED
            raise

        if self.session.state is SessionState.ABANDONED:
            video_source.stop()
            return

        profiles = self._store_hold.enter_context(self.store.reading())
        self.session.state = SessionState.AWAITING_MATCH
        logger.info(f"Session started for {self.session.requested_pass_type} pass")

        task = self.detection_loop.start(video_source, profiles, self._handle_match, on_frame_result)
        task.add_done_callback(self._on_loop_done)

    async def wait(self) -> Session:
        """Wait until the session returns home or is abandoned."""
        if self._done is None:
            raise RuntimeError("Session was not started")
        return await self._done

    async def run(self, on_frame_result: Optional[Callable[[FrameResult], None]] = None) -> Session:
        """Start the session and wait for it to complete."""
        await self.start(on_frame_result)
        try:
            return await self.wait()
        finally:
            if self.session.state is SessionState.AWAITING_MATCH:
                self.abandon()
            self.detection_loop.stop()

    def abandon(self) -> None:
        """Leave the session early. Granted sessions skip the rest of the dwell."""
        state = self.session.state
        if state in (SessionState.RETURNING, SessionState.ABANDONED):
            return
        if state is SessionState.GRANTED:
            if self._dwell_handle is not None:
                self._dwell_handle.cancel()
            self._finish()
            return

        self.detection_loop.stop()
        self.session.state = SessionState.ABANDONED
        self._store_hold.close()
        logger.info(f"Session for {self.session.requested_pass_type} pass abandoned")
        self._resolve()

    def _handle_match(self, match: MatchResult) -> None:
        if self.session.state is not SessionState.AWAITING_MATCH:
            logger.debug(f"Ignoring match for {match.profile.display_name} in state {self.session.state.value}")
            return

        self.session.state = SessionState.GRANTED
        self.detection_loop.stop()
        self._store_hold.close()

        self.session.granted_identity = match.profile
        self.session.confidence = match.confidence
        self.session.granted_at = self.clock()
        logger.info(f"Pass granted: {match.profile.display_name} -> {self.session.requested_pass_type} "
                    f"({self.session.confidence_text}%)")

        loop = asyncio.get_running_loop()
        self.notification = loop.run_in_executor(None, self._notify, self._pass_event())
        self._dwell_handle = loop.call_later(self.dwell_seconds, self._finish)

    def _pass_event(self) -> PassEvent:
        return PassEvent(
            identity=self.session.granted_identity.display_name,
            pass_type=self.session.requested_pass_type,
            time=format_pass_time(self.session.granted_at),
            confidence=self.session.confidence_text
        )

    def _notify(self, event: PassEvent) -> bool:
        try:
            self.notifier.notify(event)
            return True
        except NotificationError as e:
            logger.error(f"Failed to report pass: {e}")
        except Exception as e:
            logger.error(f"Notification sink error: {e}")
        return False

    def _finish(self) -> None:
        if self.session.state is not SessionState.GRANTED:
            return
        self.session.state = SessionState.RETURNING
        logger.info("Returning to home view")
        self._resolve()

    def _on_loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None or self.session.state is not SessionState.AWAITING_MATCH:
            return

        logger.error(f"Detection ended with error: {error}")
        self.session.state = SessionState.ABANDONED
        self._store_hold.close()
        if self._done is not None and not self._done.done():
            self._done.set_exception(error)

    def _resolve(self) -> None:
        if self._done is not None and not self._done.done():
            self._done.set_result(self.session)
