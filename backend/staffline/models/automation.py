"""Ledger of automated messages, used to deliver each one at most once."""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer, Enum, UniqueConstraint, Uuid
from staffline.database import Base


class AutomationKind(str, PyEnum):
    REMINDER = "reminder"
    REVIEW = "review"
    REACTIVATION = "reactivation"


class AutomationRunStatus(str, PyEnum):
    PENDING = "pending"   # claimed, send in flight
    SENT = "sent"
    FAILED = "failed"     # may be re-claimed by a later trigger
    UNDELIVERABLE = "undeliverable"  # permanent channel error, never retried


class AutomationRun(Base):
    """
    A (kind, target, key) triple that has been claimed for sending.
    key distinguishes reminder lead types ("24h", "2h") for the same booking
    and reactivation cycles for the same client.
    """

    __tablename__ = "automation_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)

    kind = Column(Enum(AutomationKind), nullable=False)
    target_id = Column(Uuid, nullable=False)
    key = Column(String(50), nullable=False, default="")

    status = Column(Enum(AutomationRunStatus), default=AutomationRunStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=1, nullable=False)
    error = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    sent_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("kind", "target_id", "key", name="uq_automation_run_target"),
    )

    def __repr__(self):
        return f"<AutomationRun {self.kind} {self.target_id} {self.key} {self.status}>"
