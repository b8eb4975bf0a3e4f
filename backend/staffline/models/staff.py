"""Staff members and their time off."""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship
from staffline.database import Base


class Staff(Base):
    """A schedulable person. Listing order is insertion order."""

    __tablename__ = "staff"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)

    name = Column(String(255), nullable=False)
    role = Column(String(100))
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    business = relationship("Business", back_populates="staff")
    time_off = relationship("StaffTimeOff", back_populates="staff", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Staff {self.name}>"


class StaffTimeOff(Base):
    """Blocked interval for one staff member, stored in UTC."""

    __tablename__ = "staff_time_off"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    staff_id = Column(Uuid, ForeignKey("staff.id"), nullable=False)

    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    reason = Column(String(255))  # "Vacation", "Sick", ...

    created_at = Column(DateTime, default=datetime.utcnow)

    staff = relationship("Staff", back_populates="time_off")

    __table_args__ = (
        Index("ix_staff_time_off_staff_start", "staff_id", "start_at"),
    )

    def __repr__(self):
        return f"<StaffTimeOff {self.start_at} - {self.end_at}>"
