"""Twilio integration for SMS."""

import asyncio
import logging
from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from staffline.exceptions import ExternalServiceError
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class TwilioClient:
    """Client for Twilio SMS."""

    def __init__(self):
        self.client = Client(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN
        ) if settings.TWILIO_ACCOUNT_SID else None
        self.from_number = settings.TWILIO_PHONE_NUMBER

    @retry(
        retry=retry_if_exception_type(TwilioRestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create_message(self, to: str, message: str):
        # Twilio SDK is synchronous, run in executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.client.messages.create(
                body=message,
                from_=self.from_number,
                to=to,
            )
        )

    async def send_sms(self, to: str, message: str) -> dict:
        """
        Send an SMS message.
        Returns dict with 'sid' and 'status'.
        """
        if not self.client:
            # Dev mode - just log
            logger.info("[DEV] SMS to %s: %s", to, message)
            return {"sid": "dev_mode", "status": "sent"}

        try:
            result = await self._create_message(to, message)
        except TwilioRestException as e:
            raise ExternalServiceError(f"Twilio SMS error: {e.msg}", transient=(e.status or 0) >= 500 or e.status == 429)

        return {
            "sid": result.sid,
            "status": result.status,
        }
