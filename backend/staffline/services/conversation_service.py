"""Conversation service - runs one inbound message through the assistant."""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from staffline.agents.booking_agent import BookingAgent
from staffline.agents.extraction import extract_client_name, extract_phone
from staffline.agents.prompts import build_system_prompt, fallback_reply, quota_reply
from staffline.agents.tools import BookingToolbox
from staffline.database import get_redis
from staffline.integrations.openai_client import OpenAIClient
from staffline.locks import ConversationLocks
from staffline.models.business import Business
from staffline.schemas.context import ExtractedFields
from staffline.schemas.conversation import InboundMessage, TurnResult
from staffline.services.context_service import ContextService
from staffline.services.notification_service import NotificationService
from staffline.exceptions import ExternalServiceError
from staffline.timezones import get_offset_minutes, to_local

logger = logging.getLogger(__name__)

START_COMMAND = "/start"

WELCOME = {
    "en": "Hello! I'm the assistant of {name}. I can tell you about our services and book you in. How can I help?",
    "ru": "Здравствуйте! Я ассистент {name}. Расскажу об услугах и запишу вас. Чем могу помочь?",
}


class ConversationService:
    """
    Handles inbound client messages.

    The model call runs without any lock held; only the writes that follow
    it are serialised per conversation.
    """

    def __init__(
        self,
        db: AsyncSession,
        llm=None,
        locks: Optional[ConversationLocks] = None,
        sender_factory: Optional[Callable[[Business], object]] = None,
    ):
        self.db = db
        self.llm = llm or OpenAIClient()
        self.locks = locks
        self.sender_factory = sender_factory or NotificationService

    async def _locks(self) -> ConversationLocks:
        if self.locks is None:
            self.locks = ConversationLocks(await get_redis())
        return self.locks

    async def handle_inbound(self, event: InboundMessage, now: Optional[datetime] = None) -> TurnResult:
        """Answer one message and persist the turn."""
        now = now or datetime.utcnow()

        business = await self.db.get(Business, event.business_id)
        if not business or not business.is_active:
            logger.warning("Message for unknown or inactive business %s", event.business_id)
            return TurnResult(rejected=True, reason="business_not_found")

        text = (event.text or "").strip()
        logger.debug("Inbound from %s for business %s: %r", event.channel_id, event.business_id, text)
        if not text and not event.phone:
            return TurnResult(rejected=True, reason="empty_message")

        language = business.language
        sender = self.sender_factory(business)
        context = ContextService(self.db, business.id)

        client = await context.get_or_create_client(event.channel_id, username=event.username)
        if client.is_blocked:
            return TurnResult(rejected=True, reason="client_blocked", client_id=client.id)

        conversation = await context.get_or_create_conversation(client.id)
        # A rolled back booking attempt expires loaded rows; keep plain ids
        client_id, conversation_id = client.id, conversation.id
        result = TurnResult(client_id=client_id, conversation_id=conversation_id)

        # Shared contact: store the phone, no assistant turn
        if not text:
            locks = await self._locks()
            async with locks.hold(conversation_id):
                await context.update_client_after_message(
                    client_id, ExtractedFields(phone=event.phone), event.display_name, now
                )
            result.reason = "contact_saved"
            return result

        if text == START_COMMAND:
            welcome = business.welcome_message or WELCOME.get(language, WELCOME["en"]).format(name=business.name)
            await self._persist_turn(context, conversation_id, client_id, text, welcome, event, now, count_usage=False)
            result.reply = welcome
            result.delivery = await sender.send(event.channel_id, welcome)
            return result

        if not business.plan_active(now) or not business.has_message_quota():
            logger.info("Business %s is over quota or expired", business.id)
            result.rejected = True
            result.reason = "quota_exceeded"
            result.reply = quota_reply(language)
            result.delivery = await sender.send(event.channel_id, result.reply)
            return result

        client_context = await context.build_client_context(client_id)
        business_context = await context.build_business_context()
        today = to_local(now, get_offset_minutes(business.timezone)).date()
        system_prompt = build_system_prompt(client_context, business_context, language, today=today)

        history = await context.load_history(conversation_id)
        history.append({"role": "user", "content": text})

        agent = BookingAgent(
            self.llm,
            BookingToolbox(self.db, business.id, client_id, now=now),
            language=language,
        )
        try:
            outcome = await agent.run(system_prompt, history)
        except ExternalServiceError as e:
            logger.error("Turn aborted for conversation %s: %s", conversation_id, e.message)
            result.failed = True
            result.reason = "llm_unavailable"
            result.reply = fallback_reply(language)
            result.delivery = await sender.send(event.channel_id, result.reply)
            return result

        await self._persist_turn(context, conversation_id, client_id, text, outcome.reply, event, now)

        result.reply = outcome.reply
        result.rounds = outcome.rounds
        result.delivery = await sender.send(event.channel_id, outcome.reply)
        return result

    async def _persist_turn(
        self,
        context: ContextService,
        conversation_id,
        client_id,
        text: str,
        reply: str,
        event: InboundMessage,
        now: datetime,
        count_usage: bool = True,
    ) -> None:
        fields = ExtractedFields(
            name=extract_client_name(text),
            phone=event.phone or extract_phone(text),
        )
        locks = await self._locks()
        async with locks.hold(conversation_id):
            await context.append_messages(
                conversation_id,
                [{"role": "user", "content": text}, {"role": "assistant", "content": reply}],
                now,
            )
            await context.update_conversation_message_count(conversation_id)
            await context.update_client_after_message(client_id, fields, event.display_name, now)
            if count_usage:
                await context.record_message_usage()
