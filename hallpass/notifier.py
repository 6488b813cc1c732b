"""
Pass Notification Module

Sinks that record a granted pass. The HTTP sink sends the four pass fields
as query parameters of a plain GET request to the configured pass log
endpoint; without an endpoint the pass is only written to the log.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

import requests

from .errors import NotificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PassEvent:
    """A granted pass as reported to the notification sink."""

    identity: str
    pass_type: str
    time: str
    confidence: str

    def to_params(self) -> Dict[str, str]:
        return {
            'name': self.identity,
            'pass': self.pass_type,
            'time': self.time,
            'confidence': self.confidence
        }


class LogNotifier:
    """Writes granted passes to the application log."""

    def notify(self, event: PassEvent) -> None:
        logger.info(f"Hall pass logged: {event.identity} -> {event.pass_type} "
                    f"at {event.time} ({event.confidence}%)")


class HttpNotifier(LogNotifier):
    """Reports granted passes to a remote pass log over HTTP."""

    def __init__(self, url: str, timeout: float = 5.0, session=None):
        """
        Initialize HTTP notifier.

        Args:
            url: Pass log endpoint
            timeout: Request timeout in seconds
            session: Optional requests session
        """
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, event: PassEvent) -> None:
        """
        Send a granted pass to the remote log.

        Raises:
            NotificationError: If the request fails or is rejected
        """
        super().notify(event)
        try:
            response = self.session.get(self.url, params=event.to_params(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Pass log request failed: {e}") from e
        logger.debug(f"Pass log accepted ({response.status_code})")


def create_notifier(config: Dict[str, Any]) -> LogNotifier:
    """Build the notifier described by the notification config section."""
    notification_config = config.get('notification', {})
    url = notification_config.get('url')
    if not url:
        logger.info("No pass log endpoint configured, logging passes locally")
        return LogNotifier()
    return HttpNotifier(url, timeout=notification_config.get('timeout', 5.0))
