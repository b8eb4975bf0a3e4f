"""SQLAlchemy models."""

from staffline.models.business import Business, AutomationSettings
from staffline.models.staff import Staff, StaffTimeOff
from staffline.models.service import Service, FAQ
from staffline.models.client import Client
from staffline.models.booking import Booking, BookingStatus, BookingSlotClaim
from staffline.models.conversation import Conversation, Message, ConversationSummary
from staffline.models.automation import AutomationRun, AutomationKind, AutomationRunStatus

__all__ = [
    "Business",
    "AutomationSettings",
    "Staff",
    "StaffTimeOff",
    "Service",
    "FAQ",
    "Client",
    "Booking",
    "BookingStatus",
    "BookingSlotClaim",
    "Conversation",
    "Message",
    "ConversationSummary",
    "AutomationRun",
    "AutomationKind",
    "AutomationRunStatus",
]
