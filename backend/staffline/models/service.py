"""Bookable services and FAQ entries."""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import relationship
from staffline.database import Base


class Service(Base):
    """A bookable service. Duration drives the slot length."""

    __tablename__ = "services"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)

    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(12, 2))
    duration_minutes = Column(Integer)  # Null = DEFAULT_SERVICE_DURATION_MINUTES
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    business = relationship("Business", back_populates="services")

    def __repr__(self):
        return f"<Service {self.name}>"


class FAQ(Base):
    """Question and answer pair the assistant may quote."""

    __tablename__ = "faqs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)

    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<FAQ {self.question[:30]}>"
