"""External service integrations."""

from staffline.integrations.openai_client import OpenAIClient
from staffline.integrations.telegram_client import TelegramClient
from staffline.integrations.twilio_client import TwilioClient

__all__ = [
    "OpenAIClient",
    "TelegramClient",
    "TwilioClient",
]
