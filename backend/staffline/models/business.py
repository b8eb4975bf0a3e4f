"""Business (tenant) model and per-tenant automation settings."""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, JSON, Text, Integer, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from staffline.database import Base


class Business(Base):
    """Business entity - a salon, clinic or studio that takes bookings (tenant)."""

    __tablename__ = "businesses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Basic Info
    name = Column(String(255), nullable=False)
    phone = Column(String(30))
    address = Column(String(500))
    description = Column(Text)

    # Configuration
    timezone = Column(String(50), default="Asia/Tashkent")
    language = Column(String(10), default="ru")
    is_active = Column(Boolean, default=True)

    # Operating hours, keyed by weekday name:
    # {"mon": {"start": "09:00", "end": "18:00"}, "sun": null, ...}
    # Null column means 09:00-18:00 every day.
    working_hours = Column(JSON)

    # Messaging channel the assistant answers on
    channel = Column(String(20), default="telegram")  # 'telegram' or 'sms'
    bot_token = Column(String(255))
    owner_chat_id = Column(String(100))

    # AI Configuration
    ai_tone = Column(String(20), default="friendly")  # friendly, professional, casual
    ai_rules = Column(Text)
    welcome_message = Column(Text)

    # Subscription / quota
    plan = Column(String(30), default="trial")
    plan_expires_at = Column(DateTime)
    messages_limit = Column(Integer, default=-1)  # -1 = unlimited
    messages_used = Column(Integer, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    staff = relationship("Staff", back_populates="business", order_by="Staff.created_at")
    services = relationship("Service", back_populates="business")
    automation_settings = relationship("AutomationSettings", back_populates="business", uselist=False)

    def plan_active(self, now: datetime) -> bool:
        """True while the subscription has not expired."""
        return self.plan_expires_at is None or self.plan_expires_at > now

    def has_message_quota(self) -> bool:
        if self.messages_limit is None or self.messages_limit < 0:
            return True
        return (self.messages_used or 0) < self.messages_limit

    def __repr__(self):
        return f"<Business {self.name}>"


class AutomationSettings(Base):
    """Per-business switches and thresholds for scheduled messages."""

    __tablename__ = "automation_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, unique=True)

    reminders_enabled = Column(Boolean, default=True)
    reviews_enabled = Column(Boolean, default=True)
    reactivation_enabled = Column(Boolean, default=True)

    # Null = use the global default
    review_delay_hours = Column(Integer)
    reactivation_idle_days = Column(Integer)
    reactivation_discount = Column(Integer, default=15)  # percent

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business = relationship("Business", back_populates="automation_settings")

    def __repr__(self):
        return f"<AutomationSettings business={self.business_id}>"
