"""Inbound message and turn result schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field

from staffline.schemas.notification import DeliveryResult


class InboundMessage(BaseModel):
    """A client message received on a messaging channel."""

    business_id: UUID
    channel_id: str = Field(..., min_length=1, max_length=100)
    text: str = ""
    display_name: Optional[str] = None
    username: Optional[str] = None
    phone: Optional[str] = None  # shared contact, when the channel provides one
    sent_at: Optional[datetime] = None


class TurnResult(BaseModel):
    """What happened to one inbound message."""

    reply: Optional[str] = None
    rejected: bool = False
    failed: bool = False
    reason: Optional[str] = None
    client_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    rounds: int = 0
    delivery: Optional[DeliveryResult] = None
