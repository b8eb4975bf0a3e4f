"""Booking models and the slot claims that keep them from overlapping."""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Index, Enum, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from staffline.database import Base


class BookingStatus(str, PyEnum):
    """Booking status enumeration."""
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Booking(Base):
    """An appointment of one client with one staff member for one service."""

    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    staff_id = Column(Uuid, ForeignKey("staff.id"), nullable=False)
    service_id = Column(Uuid, ForeignKey("services.id"), nullable=False)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)

    # Scheduling (UTC)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)

    status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False)

    # Snapshot of what the client told us at booking time
    client_name = Column(String(255))
    client_phone = Column(String(30))
    notes = Column(Text)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    cancelled_at = Column(DateTime)
    completed_at = Column(DateTime)
    review_requested_at = Column(DateTime)

    # Relationships
    staff = relationship("Staff")
    service = relationship("Service")
    client = relationship("Client", back_populates="bookings")
    claims = relationship("BookingSlotClaim", back_populates="booking", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_bookings_staff_start", "staff_id", "start_at"),
        Index("ix_bookings_business_status_start", "business_id", "status", "start_at"),
    )

    def __repr__(self):
        return f"<Booking {self.start_at} {self.status}>"


class BookingSlotClaim(Base):
    """
    One row per calendar bucket a live booking occupies.
    The unique (staff_id, bucket) pair makes overlapping inserts fail at the
    database, whichever process attempts them.
    """

    __tablename__ = "booking_slot_claims"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    booking_id = Column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    staff_id = Column(Uuid, ForeignKey("staff.id"), nullable=False)
    bucket = Column(DateTime, nullable=False)

    booking = relationship("Booking", back_populates="claims")

    __table_args__ = (
        UniqueConstraint("staff_id", "bucket", name="uq_slot_claim_staff_bucket"),
    )

    def __repr__(self):
        return f"<BookingSlotClaim {self.staff_id} {self.bucket}>"
