"""Twilio client wrapper for outbound SMS."""

from typing import Any

from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from app.settings import settings


class TwilioSendError(Exception):
    """Raised when Twilio rejects an outbound message."""


class TwilioSmsClient:
    """Twilio client wrapper for SMS operations."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
    ) -> None:
        """Initialize Twilio client.

        Args:
            account_sid: Twilio account SID (defaults to settings)
            auth_token: Twilio auth token (defaults to settings)
            from_number: Sender number (defaults to settings)
        """
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_from_number

        if not self.account_sid or not self.auth_token:
            raise ValueError("Twilio account SID and auth token must be provided")
        if not self.from_number:
            raise ValueError("Twilio sender number must be provided")

        self.client = TwilioClient(self.account_sid, self.auth_token)

    def send_sms(self, to: str, body: str) -> dict[str, Any]:
        """Send an SMS message.

        Args:
            to: Recipient phone number (E.164 format)
            body: Message body

        Returns:
            Dictionary with message SID and status

        Raises:
            TwilioSendError: If sending fails
        """
        try:
            message = self.client.messages.create(to=to, from_=self.from_number, body=body)
        except TwilioException as e:
            raise TwilioSendError(f"Twilio SMS send failed: {str(e)}") from e

        return {
            "sid": message.sid,
            "status": message.status,
            "to": message.to,
            "date_created": message.date_created.isoformat() if message.date_created else None,
        }
