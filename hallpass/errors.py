"""
Error Types

Exceptions raised by the hall pass engine. Only enrollment and resource
errors (plus the empty-store condition) are meant to reach the user; frame
cycle and notification errors are absorbed and logged where they occur.
"""


class HallPassError(Exception):
    """Base class for all hall pass errors."""


class EnrollmentLoadError(HallPassError):
    """An enrolled image could not be turned into a reference profile."""

    def __init__(self, source_id: str, reason: str):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"{source_id}: {reason}")


class FrameCycleError(HallPassError):
    """A single detection cycle failed."""


class ResourceError(HallPassError):
    """The video source could not be acquired or stopped delivering frames."""


class NotificationError(HallPassError):
    """The pass notification sink could not be reached."""


class NoIdentitiesEnrolledError(HallPassError):
    """A session was requested while the profile store is empty."""

    def __init__(self, message: str = "No identities enrolled"):
        super().__init__(message)
