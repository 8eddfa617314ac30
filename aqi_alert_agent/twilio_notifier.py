"""Twilio SMS delivery for scheduled alerts."""

import logging

from .config import TwilioConfig
from .models import NotificationPayload

logger = logging.getLogger(__name__)

try:
    from twilio.rest import Client
    TWILIO_AVAILABLE = True
except ImportError:
    TWILIO_AVAILABLE = False
    logger.warning("Twilio library not installed. Install with: pip install twilio")


def format_sms(payload: NotificationPayload) -> str:
    """Render a notification as a single SMS body."""
    if payload.title:
        return f"{payload.title}\n{payload.body}"
    return payload.body


class TwilioDelivery:
    """
    Delivery callable for LocalNotificationPlatform that sends each alert as SMS.

    Raises on failure so the platform logs the failed delivery.
    """

    def __init__(self, config: TwilioConfig, client=None):
        if client is None:
            if not TWILIO_AVAILABLE:
                raise ImportError(
                    "Twilio library not installed. Install with: pip install twilio"
                )
            client = Client(config.account_sid, config.auth_token)
        self.config = config
        self.client = client

    def __call__(self, payload: NotificationPayload) -> None:
        message = format_sms(payload)
        if not message or not message.strip():
            logger.info("Message is empty; not sending SMS.")
            return

        try:
            message_obj = self.client.messages.create(
                body=message,
                from_=self.config.from_number,
                to=self.config.to_number
            )
            logger.info(f"Alert SMS sent successfully. SID: {message_obj.sid}")
            logger.debug(f"Message preview: {message[:50]}...")
        except Exception as e:
            error_str = str(e)
            if "20003" in error_str or "Authenticate" in error_str or "401" in error_str:
                logger.error(
                    "Twilio authentication failed (Error 20003). "
                    "Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN; "
                    f"current Account SID (first 10 chars): {self.config.account_sid[:10]}..."
                )
            else:
                logger.error(f"Failed to send alert SMS: {e}")
            raise
