"""
Notification Service

Sends meeting confirmation emails through SendGrid's v3 mail API.

Sending is best-effort: failures are logged and reported as False, never
raised, so a booking is not affected by a mail outage.
"""

import logging
from typing import Optional
from zoneinfo import ZoneInfo

import httpx

from app.config import get_settings
from app.core.scheduling.messages import format_meeting_time
from app.core.scheduling.types import Meeting
from app.infra.retry import retry_with_backoff

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class TransientSendError(Exception):
    """SendGrid answered with a 5xx or the connection failed."""
    pass


class NotificationService:
    """Handles email notifications."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        backoff_base: float = 0.2,
    ):
        """Initialize notification service.

        Args:
            api_key: SendGrid API key (defaults to settings)
            from_email: Sender address
            http_client: Optional shared httpx client
            max_attempts: Attempts for transient failures
            backoff_base: First retry delay in seconds
        """
        settings = get_settings()
        self.api_key = api_key or settings.sendgrid_api_key
        self.from_email = from_email or settings.notification_from_email
        self._client = http_client
        self._timeout = settings.notification_timeout_seconds
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _post(self, payload: dict) -> httpx.Response:
        try:
            response = await self._get_client().post(
                SENDGRID_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
        except httpx.TransportError as e:
            raise TransientSendError(str(e)) from e
        if response.status_code >= 500:
            raise TransientSendError(f"SendGrid returned {response.status_code}")
        return response

    async def send_email(self, to: str, subject: str, body: str) -> bool:
        """Send email notification.

        Args:
            to: Email address
            subject: Email subject
            body: Plain-text body

        Returns:
            True if sent successfully
        """
        if not to:
            logger.warning("Email not sent: missing recipient")
            return False
        if not self.is_configured:
            logger.info(f"Email to {to} skipped: SendGrid not configured")
            return False

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

        try:
            response = await retry_with_backoff(
                lambda: self._post(payload),
                is_transient=lambda e: isinstance(e, TransientSendError),
                max_attempts=self._max_attempts,
                base_delay=self._backoff_base,
                description="SendGrid send",
            )
        except TransientSendError as e:
            logger.error(f"Email to {to} failed after retries: {e}")
            return False

        if 200 <= response.status_code < 300:
            logger.info(f"Email sent to {to}: {subject}")
            return True

        logger.warning(f"Email to {to} rejected by SendGrid: {response.status_code}")
        return False

    async def send_meeting_confirmation(self, meeting: Meeting, tz: ZoneInfo) -> bool:
        """Email every attendee the meeting time and join link."""
        when = format_meeting_time(meeting.start_time, tz)
        lines = [
            f"Your meeting \"{meeting.subject}\" is confirmed for {when}.",
            f"Duration: {int((meeting.end_time - meeting.start_time).total_seconds() // 60)} minutes",
        ]
        if meeting.join_link:
            lines.append(f"Join link: {meeting.join_link}")
        if meeting.description:
            lines.extend(["", meeting.description])
        body = "\n".join(lines)

        results = [
            await self.send_email(attendee, f"Meeting confirmed: {meeting.subject}", body)
            for attendee in meeting.attendees
        ]
        return bool(results) and all(results)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Singleton
_notifications: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get singleton NotificationService."""
    global _notifications
    if _notifications is None:
        _notifications = NotificationService()
    return _notifications
