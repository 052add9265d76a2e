"""
Failure notifications.

EmailNotifier sends alerts through a transactional e-mail HTTP API
(SendGrid v3 ``mail/send`` payload). NullNotifier is used when no
notification settings are configured and only logs.
"""

import logging
import socket
from typing import List

import requests


logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when an alert cannot be delivered."""
    pass


def format_failure(database: str, stage: str, error: Exception):
    """
    Build subject and body of a failure alert.

    Returns:
        Tuple of (subject, body)
    """
    host = socket.gethostname()
    subject = f"Backup of {database} failed"
    body = (
        f"The backup of database '{database}' on {host} failed during the {stage} stage.\n\n"
        f"Error: {error}\n\n"
        f"Other databases in this run were not affected. "
        f"Partial files are left in place until the next local retention sweep."
    )
    return subject, body


class EmailNotifier:
    """Sends failure alerts via an e-mail API."""

    def __init__(self, api_key: str, sender: str, recipients: List[str],
                 api_url: str = 'https://api.sendgrid.com/v3/mail/send',
                 subject_prefix: str = '[dbvault]', timeout: int = 30, session=None):
        self.api_key = api_key
        self.sender = sender
        self.recipients = recipients
        self.api_url = api_url
        self.subject_prefix = subject_prefix
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, notification_config) -> 'EmailNotifier':
        return cls(
            api_key=notification_config.api_key,
            sender=notification_config.sender,
            recipients=notification_config.recipients,
            api_url=notification_config.api_url,
            subject_prefix=notification_config.subject_prefix,
            timeout=notification_config.timeout
        )

    def send(self, subject: str, body: str):
        """
        Send an alert to all recipients.

        Args:
            subject: Alert subject (the configured prefix is prepended)
            body: Plain-text body

        Raises:
            NotificationError: If the API rejects the message or is unreachable
        """
        if self.subject_prefix:
            subject = f"{self.subject_prefix} {subject}"

        payload = {
            'personalizations': [{'to': [{'email': r} for r in self.recipients]}],
            'from': {'email': self.sender},
            'subject': subject,
            'content': [{'type': 'text/plain', 'value': body}]
        }
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json'
        }

        try:
            response = self.session.post(
                self.api_url,
                json=payload,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise NotificationError(f"Failed to reach e-mail API: {e}")

        if response.status_code not in (200, 202):
            raise NotificationError(f"E-mail API returned HTTP {response.status_code}: {response.text}")

        logger.info(f"Alert sent to {len(self.recipients)} recipient(s): {subject}")

    def notify_failure(self, database: str, stage: str, error: Exception):
        """Send a failure alert naming the database."""
        subject, body = format_failure(database, stage, error)
        self.send(subject, body)


class NullNotifier:
    """Used when notifications are not configured."""

    def send(self, subject: str, body: str):
        logger.warning(f"Notifications not configured, alert not sent: {subject}")

    def notify_failure(self, database: str, stage: str, error: Exception):
        subject, body = format_failure(database, stage, error)
        self.send(subject, body)


def create_notifier(notification_config=None):
    """
    Factory function to create the notifier for a configuration.

    Args:
        notification_config: NotificationConfig, or None when alerts are disabled

    Returns:
        EmailNotifier or NullNotifier instance
    """
    if notification_config is None:
        return NullNotifier()
    return EmailNotifier.from_config(notification_config)
