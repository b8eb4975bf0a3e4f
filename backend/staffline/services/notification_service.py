"""Notification service - sends messages on a business's channel."""

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple

from staffline.models.business import Business
from staffline.integrations.telegram_client import TelegramClient
from staffline.integrations.twilio_client import TwilioClient
from staffline.schemas.notification import DeliveryResult
from staffline.exceptions import ExternalServiceError
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# (caller's key, channel id, text)
Outgoing = Tuple[Any, str, str]


class NotificationService:
    """Sender bound to one business's messaging channel."""

    def __init__(self, business: Business):
        self.business_id = business.id
        self.channel = business.channel or "telegram"
        self.telegram = TelegramClient(business.bot_token) if self.channel == "telegram" else None
        self.twilio = TwilioClient() if self.channel == "sms" else None

    async def send(self, channel_id: str, text: str) -> DeliveryResult:
        """Deliver one message. Channel failures come back as success=False."""
        try:
            if self.telegram:
                result = await self.telegram.send_message(channel_id, text)
                external_id = result.get("message_id")
            elif self.twilio:
                result = await self.twilio.send_sms(channel_id, text)
                external_id = result.get("sid")
            else:
                raise ExternalServiceError(f"Unsupported channel: {self.channel}", transient=False)
        except ExternalServiceError as e:
            logger.warning("Send to %s failed for business %s: %s", channel_id, self.business_id, e.message)
            return DeliveryResult(channel_id=channel_id, success=False, error=e.message, transient=e.transient)

        return DeliveryResult(
            channel_id=channel_id,
            success=True,
            external_id=str(external_id) if external_id is not None else None,
        )

    async def send_batch(
        self,
        messages: Sequence[Outgoing],
        batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ) -> List[Tuple[Any, DeliveryResult]]:
        """
        Send in fixed-width batches, concurrently within a batch, sleeping
        between batches. Returns one (key, result) per message, in order.
        """
        return await send_in_batches(self, messages, batch_size, delay_seconds)


async def send_in_batches(
    sender,
    messages: Sequence[Outgoing],
    batch_size: Optional[int] = None,
    delay_seconds: Optional[float] = None,
) -> List[Tuple[Any, DeliveryResult]]:
    """Batch fan-out over any object with an async send(channel_id, text)."""
    batch_size = batch_size or settings.AUTOMATION_BATCH_SIZE
    delay_seconds = settings.AUTOMATION_BATCH_DELAY_SECONDS if delay_seconds is None else delay_seconds

    results = []
    for start in range(0, len(messages), batch_size):
        batch = messages[start:start + batch_size]
        outcomes = await asyncio.gather(
            *(sender.send(channel_id, text) for _, channel_id, text in batch),
            return_exceptions=True,
        )
        for (key, channel_id, _), outcome in zip(batch, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error("Unexpected send error to %s: %r", channel_id, outcome)
                outcome = DeliveryResult(channel_id=channel_id, success=False, error=str(outcome) or type(outcome).__name__)
            results.append((key, outcome))

        if start + batch_size < len(messages) and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)

    return results
