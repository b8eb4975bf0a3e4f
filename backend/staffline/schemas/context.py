"""Context schemas fed into the assistant's system prompt."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Any
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class ServiceInfo(BaseModel):
    """Service as shown to the assistant."""

    id: UUID
    name: str
    price: Optional[Decimal] = None
    duration_minutes: int

    model_config = ConfigDict(from_attributes=True)


class StaffInfo(BaseModel):
    """Staff member as shown to the assistant."""

    id: UUID
    name: str
    role: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class FAQEntry(BaseModel):
    question: str
    answer: str

    model_config = ConfigDict(from_attributes=True)


class BookingInfo(BaseModel):
    """Past or upcoming booking, in business-local time."""

    id: UUID
    local_start: datetime
    service_name: Optional[str] = None
    staff_name: Optional[str] = None
    status: str


class ClientContext(BaseModel):
    """What we know about the client. Defaults describe a new client."""

    is_new: bool = True
    name: Optional[str] = None
    phone: Optional[str] = None
    total_visits: int = 0
    total_messages: int = 0
    last_visit_at: Optional[datetime] = None
    notes: Optional[str] = None
    summary: Optional[str] = None
    recent_bookings: List[BookingInfo] = Field(default_factory=list)
    conversation_summaries: List[str] = Field(default_factory=list)

    @classmethod
    def new_client(cls) -> "ClientContext":
        return cls()


class BusinessContext(BaseModel):
    """Tenant facts the assistant may rely on."""

    id: UUID
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    timezone: str
    language: str = "ru"
    working_hours: Optional[Any] = None
    ai_tone: str = "friendly"
    ai_rules: Optional[str] = None
    services: List[ServiceInfo] = Field(default_factory=list)
    staff: List[StaffInfo] = Field(default_factory=list)
    faqs: List[FAQEntry] = Field(default_factory=list)


class ExtractedFields(BaseModel):
    """Facts pulled out of one inbound message."""

    name: Optional[str] = None
    phone: Optional[str] = None
