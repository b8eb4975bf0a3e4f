"""Argument models for the assistant's booking tools."""

import datetime as dt
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class CheckAvailabilityArgs(BaseModel):
    """Free slots for a service on a date (business-local)."""

    service_id: UUID
    date: dt.date
    date_to: Optional[dt.date] = Field(None, description="Last date to search, inclusive. Defaults to date.")
    staff_id: Optional[UUID] = Field(None, description="Only this staff member. Omit for anyone.")

    model_config = ConfigDict(extra="forbid")


class CreateBookingArgs(BaseModel):
    """Book a slot returned by check_availability."""

    service_id: UUID
    date: dt.date
    time: dt.time = Field(..., description="Local start time, HH:MM")
    staff_id: Optional[UUID] = Field(None, description="Omit to book whoever is free at that time.")
    client_name: Optional[str] = Field(None, max_length=100)
    client_phone: Optional[str] = Field(None, max_length=30)
    notes: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(extra="forbid")


class ListServicesArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ListStaffArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GetClientBookingsArgs(BaseModel):
    upcoming_only: bool = Field(True, description="Only future confirmed bookings.")

    model_config = ConfigDict(extra="forbid")


class CancelBookingArgs(BaseModel):
    booking_id: UUID

    model_config = ConfigDict(extra="forbid")
