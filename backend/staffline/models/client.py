"""Client model - people who message the business."""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Index, Integer, Uuid
from sqlalchemy.orm import relationship
from staffline.database import Base


class Client(Base):
    """A business-scoped client identified by their messaging channel id."""

    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)

    # Channel identity (Telegram chat id, phone number for SMS)
    channel_id = Column(String(100), nullable=False)
    username = Column(String(100))

    # Profile
    name = Column(String(255))
    phone = Column(String(30))
    notes = Column(Text)
    ai_summary = Column(Text)
    is_blocked = Column(Boolean, default=False)

    # Counters
    total_messages = Column(Integer, default=0, nullable=False)
    total_visits = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_interaction_at = Column(DateTime)
    last_visit_at = Column(DateTime)
    last_reactivation_at = Column(DateTime)

    # Relationships
    bookings = relationship("Booking", back_populates="client")

    # One client record per channel identity per business
    __table_args__ = (
        Index("ix_clients_business_channel", "business_id", "channel_id", unique=True),
    )

    def add_note(self, text: str, now: datetime) -> None:
        """Append a dated line to the free-text notes."""
        line = f"[{now:%Y-%m-%d %H:%M}] {text}"
        self.notes = f"{self.notes}\n{line}" if self.notes else line

    def __repr__(self):
        return f"<Client {self.name or self.channel_id}>"
