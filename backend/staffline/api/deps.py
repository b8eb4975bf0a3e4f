"""API dependencies for dependency injection and authentication."""

import hmac
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator

from staffline.database import get_db
from staffline.exceptions import AuthorizationError
from staffline.services.automation_service import AutomationScheduler
from staffline.services.conversation_service import ConversationService
from staffline.config import get_settings

settings = get_settings()


# =============================================================================
# Shared secrets
# =============================================================================

def secrets_match(expected: str, provided: Optional[str]) -> bool:
    """Constant-time comparison. An unset secret never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require 'Authorization: Bearer <CRON_SECRET>' on trigger endpoints."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not secrets_match(settings.CRON_SECRET, token):
        raise AuthorizationError("Invalid or missing cron secret")


async def verify_webhook_secret(
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
) -> None:
    """Checked only when WEBHOOK_SECRET is configured."""
    if settings.WEBHOOK_SECRET and not secrets_match(settings.WEBHOOK_SECRET, x_telegram_bot_api_secret_token):
        raise AuthorizationError("Invalid webhook secret")


async def verify_twilio_signature(
    request: Request,
    x_twilio_signature: Optional[str] = Header(None),
) -> None:
    """
    Reject SMS webhooks not signed with TWILIO_AUTH_TOKEN.
    TWILIO_WEBHOOK_BASE_URL replaces the scheme and host when behind a proxy.
    """
    if not settings.TWILIO_AUTH_TOKEN or not x_twilio_signature:
        raise AuthorizationError("Missing Twilio signature")

    url = str(request.url)
    if settings.TWILIO_WEBHOOK_BASE_URL:
        url = settings.TWILIO_WEBHOOK_BASE_URL.rstrip("/") + request.url.path
        if request.url.query:
            url += "?" + request.url.query

    params = {key: value for key, value in (await request.form()).items() if isinstance(value, str)}
    if not RequestValidator(settings.TWILIO_AUTH_TOKEN).validate(url, params, x_twilio_signature):
        raise AuthorizationError("Invalid Twilio signature")


# =============================================================================
# Services
# =============================================================================

async def get_conversation_service(db: AsyncSession = Depends(get_db)) -> ConversationService:
    return ConversationService(db)


async def get_scheduler() -> AutomationScheduler:
    return AutomationScheduler()
