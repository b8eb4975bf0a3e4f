"""Context service - client memory, conversation records and prompt inputs."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError

from staffline.agents.extraction import same_name, same_phone
from staffline.models.booking import Booking
from staffline.models.business import Business
from staffline.models.client import Client
from staffline.models.conversation import Conversation, ConversationSummary, Message
from staffline.models.service import FAQ, Service
from staffline.models.staff import Staff
from staffline.schemas.context import (
    BookingInfo,
    BusinessContext,
    ClientContext,
    ExtractedFields,
    FAQEntry,
    ServiceInfo,
    StaffInfo,
)
from staffline.exceptions import NotFoundError
from staffline.timezones import get_offset_minutes, to_local
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

RECENT_BOOKINGS = 5
RECENT_SUMMARIES = 3
RECENT_NOTES = 5

SUMMARY_PROMPT = (
    "Summarise this conversation between a client and a business assistant in 1-2 "
    "sentences. Mention the client's preferences, bookings and anything the staff "
    "should remember. Reply in the language of the conversation."
)


class ContextService:
    """Reads and updates per-client memory for one business."""

    def __init__(self, db: AsyncSession, business_id: UUID):
        self.db = db
        self.business_id = business_id

    async def get_business(self) -> Business:
        business = await self.db.get(Business, self.business_id)
        if not business:
            raise NotFoundError("Business not found")
        return business

    # -------------------------------------------------------------------------
    # Client and conversation records
    # -------------------------------------------------------------------------

    async def _find_client(self, channel_id: str) -> Optional[Client]:
        result = await self.db.execute(
            select(Client).where(
                Client.business_id == self.business_id,
                Client.channel_id == channel_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_client(
        self,
        channel_id: str,
        username: Optional[str] = None,
    ) -> Client:
        """Client for a channel identity, created on first contact."""
        client = await self._find_client(channel_id)
        if client:
            return client

        client = Client(
            business_id=self.business_id,
            channel_id=channel_id,
            username=username,
        )
        self.db.add(client)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another turn created it first
            await self.db.rollback()
            client = await self._find_client(channel_id)
            if not client:
                raise
            return client

        await self.db.refresh(client)
        logger.info("New client %s for business %s", client.id, self.business_id)
        return client

    async def get_or_create_conversation(self, client_id: UUID) -> Conversation:
        result = await self.db.execute(
            select(Conversation).where(
                Conversation.business_id == self.business_id,
                Conversation.client_id == client_id,
            )
        )
        conversation = result.scalar_one_or_none()
        if conversation:
            return conversation

        conversation = Conversation(business_id=self.business_id, client_id=client_id)
        self.db.add(conversation)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            result = await self.db.execute(
                select(Conversation).where(Conversation.client_id == client_id)
            )
            return result.scalar_one()

        await self.db.refresh(conversation)
        return conversation

    async def load_history(self, conversation_id: UUID, limit: Optional[int] = None) -> List[dict]:
        """The most recent messages, oldest first."""
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit or settings.CONVERSATION_HISTORY_LIMIT)
        )
        messages = list(result.scalars())
        messages.reverse()
        return [{"role": m.role, "content": m.content} for m in messages]

    async def append_messages(
        self,
        conversation_id: UUID,
        messages: List[dict],
        now: Optional[datetime] = None,
    ) -> None:
        now = now or datetime.utcnow()
        for index, message in enumerate(messages):
            self.db.add(Message(
                conversation_id=conversation_id,
                role=message["role"],
                content=message["content"],
                # Keeps user before assistant when both land in the same instant
                created_at=now + timedelta(microseconds=index),
            ))
        await self.db.commit()

    # -------------------------------------------------------------------------
    # Context building
    # -------------------------------------------------------------------------

    async def build_client_context(self, client_id: Optional[UUID]) -> ClientContext:
        """Known facts about a client, or the new-client defaults."""
        client = None
        if client_id:
            result = await self.db.execute(
                select(Client).where(
                    Client.id == client_id,
                    Client.business_id == self.business_id,
                )
            )
            client = result.scalar_one_or_none()
        if not client:
            return ClientContext.new_client()

        business = await self.get_business()
        offset = get_offset_minutes(business.timezone)

        result = await self.db.execute(
            select(Booking)
            .options(selectinload(Booking.service), selectinload(Booking.staff))
            .where(Booking.business_id == self.business_id, Booking.client_id == client.id)
            .order_by(Booking.start_at.desc())
            .limit(RECENT_BOOKINGS)
        )
        recent = [
            BookingInfo(
                id=booking.id,
                local_start=to_local(booking.start_at, offset),
                service_name=booking.service.name if booking.service else None,
                staff_name=booking.staff.name if booking.staff else None,
                status=booking.status.value,
            )
            for booking in result.scalars()
        ]

        result = await self.db.execute(
            select(ConversationSummary.summary)
            .where(
                ConversationSummary.business_id == self.business_id,
                ConversationSummary.client_id == client.id,
            )
            .order_by(ConversationSummary.created_at.desc())
            .limit(RECENT_SUMMARIES)
        )
        summaries = list(result.scalars())

        is_new = not (client.name or client.total_visits or client.total_messages or recent)
        return ClientContext(
            is_new=is_new,
            name=client.name,
            phone=client.phone,
            total_visits=client.total_visits or 0,
            total_messages=client.total_messages or 0,
            last_visit_at=client.last_visit_at,
            notes="\n".join(client.notes.splitlines()[-RECENT_NOTES:]) if client.notes else None,
            summary=client.ai_summary,
            recent_bookings=recent,
            conversation_summaries=summaries,
        )

    async def build_business_context(self) -> BusinessContext:
        """Services, staff, FAQ and settings of the business."""
        business = await self.get_business()

        services = (await self.db.execute(
            select(Service)
            .where(Service.business_id == self.business_id, Service.is_active == True)
            .order_by(Service.created_at, Service.name)
        )).scalars()
        staff = (await self.db.execute(
            select(Staff)
            .where(Staff.business_id == self.business_id, Staff.is_active == True)
            .order_by(Staff.created_at, Staff.id)
        )).scalars()
        faqs = (await self.db.execute(
            select(FAQ).where(FAQ.business_id == self.business_id).order_by(FAQ.created_at)
        )).scalars()

        return BusinessContext(
            id=business.id,
            name=business.name,
            phone=business.phone,
            address=business.address,
            description=business.description,
            timezone=business.timezone or settings.DEFAULT_TIMEZONE,
            language=business.language or "ru",
            working_hours=business.working_hours,
            ai_tone=business.ai_tone or "friendly",
            ai_rules=business.ai_rules,
            services=[
                ServiceInfo(
                    id=s.id,
                    name=s.name,
                    price=s.price,
                    duration_minutes=s.duration_minutes or settings.DEFAULT_SERVICE_DURATION_MINUTES,
                )
                for s in services
            ],
            staff=[StaffInfo.model_validate(s) for s in staff],
            faqs=[FAQEntry.model_validate(f) for f in faqs],
        )

    # -------------------------------------------------------------------------
    # Per-turn updates
    # -------------------------------------------------------------------------

    async def update_client_after_message(
        self,
        client_id: UUID,
        fields: ExtractedFields,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Merge extracted facts into the client record.

        A stored value is replaced only by a non-empty value that differs
        from it; empty values never erase. The channel display name fills
        the name only when none is known.
        """
        result = await self.db.execute(
            select(Client.name, Client.phone).where(
                Client.id == client_id,
                Client.business_id == self.business_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("Client not found")
        stored_name, stored_phone = row

        values = {
            "last_interaction_at": now or datetime.utcnow(),
            "total_messages": Client.total_messages + 1,
        }
        if fields.name and (not stored_name or not same_name(stored_name, fields.name)):
            values["name"] = fields.name
        elif not stored_name and display_name and display_name.strip():
            values["name"] = display_name.strip()[:255]
        if fields.phone and (not stored_phone or not same_phone(stored_phone, fields.phone)):
            values["phone"] = fields.phone

        await self.db.execute(
            update(Client).where(Client.id == client_id).values(**values)
        )
        await self.db.commit()

    async def update_conversation_message_count(self, conversation_id: UUID) -> int:
        """Count one more turn; flag the conversation for summary every N turns."""
        await self.db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.business_id == self.business_id,
            )
            .values(message_count=Conversation.message_count + 1)
        )
        count = (await self.db.execute(
            select(Conversation.message_count).where(Conversation.id == conversation_id)
        )).scalar_one_or_none()
        if count is None:
            await self.db.rollback()
            raise NotFoundError("Conversation not found")

        if count % settings.SUMMARY_EVERY_N_MESSAGES == 0:
            await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(needs_summary=True)
            )
        await self.db.commit()
        return count

    async def record_message_usage(self) -> None:
        """Count one assistant reply against the business quota."""
        await self.db.execute(
            update(Business)
            .where(Business.id == self.business_id)
            .values(messages_used=Business.messages_used + 1)
        )
        await self.db.commit()

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    async def conversations_needing_summary(self, limit: int = 50) -> List[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(
                Conversation.business_id == self.business_id,
                Conversation.needs_summary == True,
            )
            .limit(limit)
        )
        return list(result.scalars())

    async def summarize_conversation(self, conversation_id: UUID, llm) -> Optional[str]:
        """Write a short summary of the latest messages and clear the flag."""
        conversation = (await self.db.execute(
            select(Conversation).where(
                Conversation.id == conversation_id,
                Conversation.business_id == self.business_id,
            )
        )).scalar_one_or_none()
        if not conversation:
            raise NotFoundError("Conversation not found")

        history = await self.load_history(conversation_id)
        if not history:
            conversation.needs_summary = False
            await self.db.commit()
            return None

        transcript = "\n".join(f"{m['role']}: {m['content']}" for m in history)
        summary = await llm.complete(
            messages=[
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": transcript},
            ],
            temperature=0.3,
            max_tokens=200,
        )
        summary = (summary or "").strip()

        if summary:
            self.db.add(ConversationSummary(
                business_id=self.business_id,
                conversation_id=conversation.id,
                client_id=conversation.client_id,
                summary=summary,
                message_count=conversation.message_count,
            ))
            await self.db.execute(
                update(Client)
                .where(Client.id == conversation.client_id)
                .values(ai_summary=summary)
            )
        conversation.needs_summary = False
        await self.db.commit()
        return summary or None

    # -------------------------------------------------------------------------
    # Automation bookkeeping
    # -------------------------------------------------------------------------

    async def add_client_note(self, client_id: UUID, text: str, now: Optional[datetime] = None) -> None:
        """Append a dated line to the client's notes."""
        client = (await self.db.execute(
            select(Client).where(Client.id == client_id, Client.business_id == self.business_id)
        )).scalar_one_or_none()
        if not client:
            raise NotFoundError("Client not found")
        client.add_note(text, now or datetime.utcnow())
        await self.db.commit()

    async def stamp_reactivation(self, client_id: UUID, now: datetime, cooldown_cutoff: datetime) -> bool:
        """Take the reactivation slot unless the client got a message since cooldown_cutoff."""
        result = await self.db.execute(
            update(Client)
            .where(
                Client.id == client_id,
                Client.business_id == self.business_id,
                or_(Client.last_reactivation_at.is_(None), Client.last_reactivation_at < cooldown_cutoff),
            )
            .values(last_reactivation_at=now)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def restore_reactivation(
        self,
        client_id: UUID,
        stamped_at: datetime,
        previous: Optional[datetime],
    ) -> None:
        """Undo stamp_reactivation after a failed send so a later run can retry."""
        await self.db.execute(
            update(Client)
            .where(Client.id == client_id, Client.last_reactivation_at == stamped_at)
            .values(last_reactivation_at=previous)
        )
        await self.db.commit()
