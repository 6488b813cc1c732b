"""
Unit tests for pass notification sinks.
"""

import unittest
from unittest import mock

import requests

from hallpass.errors import NotificationError
from hallpass.notifier import HttpNotifier, LogNotifier, PassEvent, create_notifier


class TestNotifier(unittest.TestCase):
    """Test cases for the notification sinks."""

    def setUp(self):
        self.event = PassEvent(identity='Jane Doe', pass_type='Nurse',
                               time='09:15:00 AM', confidence='87.5')

    def test_event_params(self):
        self.assertEqual(self.event.to_params(), {
            'name': 'Jane Doe',
            'pass': 'Nurse',
            'time': '09:15:00 AM',
            'confidence': '87.5'
        })

    def test_http_notifier_sends_get_with_params(self):
        session = mock.Mock()
        session.get.return_value.status_code = 200
        notifier = HttpNotifier('http://passlog.local/log', timeout=2.0, session=session)

        notifier.notify(self.event)

        session.get.assert_called_once_with(
            'http://passlog.local/log', params=self.event.to_params(), timeout=2.0)
        session.get.return_value.raise_for_status.assert_called_once_with()

    def test_http_error_raises_notification_error(self):
        session = mock.Mock()
        session.get.side_effect = requests.ConnectionError('refused')
        notifier = HttpNotifier('http://passlog.local/log', session=session)

        with self.assertRaises(NotificationError):
            notifier.notify(self.event)

    def test_rejected_request_raises_notification_error(self):
        session = mock.Mock()
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError('500')
        notifier = HttpNotifier('http://passlog.local/log', session=session)

        with self.assertRaises(NotificationError):
            notifier.notify(self.event)

    def test_log_notifier_logs_event(self):
        with self.assertLogs('hallpass.notifier', level='INFO') as logs:
            LogNotifier().notify(self.event)
        self.assertIn('Jane Doe -> Nurse', logs.output[0])

    def test_create_notifier(self):
        self.assertIs(type(create_notifier({})), LogNotifier)
        self.assertIs(type(create_notifier({'notification': {'url': None}})), LogNotifier)

        notifier = create_notifier({'notification': {'url': 'http://passlog.local/log',
                                                     'timeout': 1.5}})
        self.assertIsInstance(notifier, HttpNotifier)
        self.assertEqual(notifier.timeout, 1.5)


if __name__ == '__main__':
    unittest.main()
