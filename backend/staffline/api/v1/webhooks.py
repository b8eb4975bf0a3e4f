"""Webhook endpoints for inbound client messages (Telegram, Twilio SMS)."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Response

from staffline.api.deps import get_conversation_service, verify_twilio_signature, verify_webhook_secret
from staffline.schemas.conversation import InboundMessage
from staffline.services.conversation_service import ConversationService

router = APIRouter()
logger = logging.getLogger(__name__)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def parse_telegram_update(business_id: UUID, update: dict) -> Optional[InboundMessage]:
    """Turn a Telegram update into an InboundMessage. None for updates we ignore."""
    message = update.get("message") or update.get("edited_message")
    if not isinstance(message, dict):
        return None

    chat = message.get("chat") or {}
    if chat.get("id") is None:
        return None

    sender = message.get("from") or {}
    display_name = " ".join(
        part for part in (sender.get("first_name"), sender.get("last_name")) if part
    ) or None
    contact = message.get("contact") or {}

    text = message.get("text")
    phone = contact.get("phone_number")
    if not text and not phone:
        return None

    return InboundMessage(
        business_id=business_id,
        channel_id=str(chat["id"]),
        text=text or "",
        display_name=display_name,
        username=sender.get("username"),
        phone=phone,
        sent_at=datetime.utcfromtimestamp(message["date"]) if message.get("date") else None,
    )


@router.post("/telegram/{business_id}", dependencies=[Depends(verify_webhook_secret)])
async def telegram_webhook(
    business_id: UUID,
    update: dict,
    conversations: ConversationService = Depends(get_conversation_service),
):
    """
    Webhook set on each business's Telegram bot.
    Always answers 200 so Telegram does not redeliver a handled update.
    """
    event = parse_telegram_update(business_id, update)
    if event is None:
        return {"ok": True, "status": "ignored"}

    result = await conversations.handle_inbound(event)
    return {
        "ok": True,
        "status": result.reason or ("failed" if result.failed else "processed"),
    }


@router.post("/sms/{business_id}", dependencies=[Depends(verify_twilio_signature)])
async def sms_webhook(
    business_id: UUID,
    From: str = Form(...),
    Body: str = Form(""),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """
    Twilio incoming-message webhook. The reply goes out through the REST API,
    so the TwiML response is empty.
    """
    event = InboundMessage(business_id=business_id, channel_id=From, text=Body, phone=From)
    result = await conversations.handle_inbound(event)
    logger.info("SMS from %s for business %s: %s", From, business_id, result.reason or "processed")
    return Response(content=EMPTY_TWIML, media_type="application/xml")
