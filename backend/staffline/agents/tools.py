"""
Booking tools exposed to the assistant.

Every call is validated against its argument model before it reaches the
booking service. Validation failures and booking errors come back as
structured results so the model can recover; only ExternalServiceError
escapes execute().
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from staffline.schemas.tools import (
    CancelBookingArgs,
    CheckAvailabilityArgs,
    CreateBookingArgs,
    GetClientBookingsArgs,
    ListServicesArgs,
    ListStaffArgs,
)
from staffline.services.booking_service import BookingService
from staffline.exceptions import (
    BookingValidationError,
    ExternalServiceError,
    SlotConflictError,
    StafflineError,
)
from staffline.timezones import get_offset_minutes, to_local, to_utc

logger = logging.getLogger(__name__)

MAX_SLOTS_PER_CALL = 20


@dataclass
class ToolSpec:
    """A tool the model may call."""

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable[[Any], Awaitable[dict]]

    def definition(self) -> dict:
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


def tool_error(error_type: str, message: str, hint: Optional[str] = None) -> dict:
    error = {"type": error_type, "message": message}
    if hint:
        error["hint"] = hint
    return {"ok": False, "error": error}


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'arguments'}: {item['msg']}"
        for item in error.errors()
    )


class BookingToolbox:
    """The fixed tool set, bound to one business and the client in the chat."""

    def __init__(
        self,
        db: AsyncSession,
        business_id: UUID,
        client_id: UUID,
        now: Optional[datetime] = None,
    ):
        self.booking_service = BookingService(db, business_id)
        self.client_id = client_id
        self.now = now
        self._offset: Optional[int] = None
        self.specs: Dict[str, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec(
                    "check_availability",
                    "Find free booking slots for a service on a date or date range. "
                    "ALWAYS call this before offering times to the client.",
                    CheckAvailabilityArgs,
                    self.check_availability,
                ),
                ToolSpec(
                    "create_booking",
                    "Book the client into a free slot once they confirmed service, date and time.",
                    CreateBookingArgs,
                    self.create_booking,
                ),
                ToolSpec(
                    "list_services",
                    "List the services offered, with price and duration.",
                    ListServicesArgs,
                    self.list_services,
                ),
                ToolSpec(
                    "list_staff",
                    "List the staff members clients can book with.",
                    ListStaffArgs,
                    self.list_staff,
                ),
                ToolSpec(
                    "get_client_bookings",
                    "List this client's bookings.",
                    GetClientBookingsArgs,
                    self.get_client_bookings,
                ),
                ToolSpec(
                    "cancel_booking",
                    "Cancel one of this client's bookings by id.",
                    CancelBookingArgs,
                    self.cancel_booking,
                ),
            )
        }

    def definitions(self) -> List[dict]:
        return [spec.definition() for spec in self.specs.values()]

    async def execute(self, name: str, raw_arguments: Optional[str]) -> dict:
        """Run one tool call and return its structured result."""
        spec = self.specs.get(name)
        if spec is None:
            return tool_error("validation_error", f"Unknown tool: {name}")

        try:
            data = json.loads(raw_arguments or "{}")
        except (TypeError, ValueError):
            return tool_error("validation_error", "Arguments are not valid JSON")
        if not isinstance(data, dict):
            return tool_error("validation_error", "Arguments must be a JSON object")

        try:
            args = spec.args_model.model_validate(data)
        except ValidationError as e:
            return tool_error("validation_error", _validation_message(e))

        try:
            payload = await spec.handler(args)
        except ExternalServiceError:
            raise
        except StafflineError as e:
            logger.info("Tool %s returned %s: %s", name, e.code, e.message)
            return {"ok": False, "error": e.to_dict()}

        logger.info("Tool %s executed", name)
        return {"ok": True, "data": payload}

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _now(self) -> datetime:
        return self.now or datetime.utcnow()

    async def _offset_minutes(self) -> int:
        if self._offset is None:
            business = await self.booking_service.get_business()
            self._offset = get_offset_minutes(business.timezone)
        return self._offset

    async def check_availability(self, args: CheckAvailabilityArgs) -> dict:
        date_to = args.date_to or args.date
        service = await self.booking_service.get_service(args.service_id)
        slots = await self.booking_service.find_slots(
            args.service_id,
            args.date,
            date_to,
            staff_id=args.staff_id,
            limit=MAX_SLOTS_PER_CALL + 1,
            now=self._now(),
        )
        return {
            "service": service.name,
            "duration_minutes": int(self.booking_service.service_duration(service).total_seconds() // 60),
            "slots": [slot.to_dict() for slot in slots[:MAX_SLOTS_PER_CALL]],
            "has_more": len(slots) > MAX_SLOTS_PER_CALL,
        }

    async def create_booking(self, args: CreateBookingArgs) -> dict:
        offset = await self._offset_minutes()
        start_at = to_utc(datetime.combine(args.date, args.time), offset)

        staff_id = args.staff_id
        if staff_id is None:
            # First staff member (insertion order) free at exactly that time
            async for slot in self.booking_service.check_availability(
                args.service_id, args.date, args.date, now=self._now()
            ):
                if slot.start_at == start_at:
                    staff_id = slot.staff_id
                    break
                if slot.start_at > start_at:
                    break
            if staff_id is None:
                if start_at <= self._now():
                    raise BookingValidationError("Cannot book a time in the past")
                raise SlotConflictError(
                    "Nobody is free at that time",
                    hint="Call check_availability and offer the client free slots.",
                )

        booking = await self.booking_service.create_booking(
            service_id=args.service_id,
            staff_id=staff_id,
            client_id=self.client_id,
            start_at=start_at,
            client_name=args.client_name,
            client_phone=args.client_phone,
            notes=args.notes,
            now=self._now(),
        )
        service = await self.booking_service.get_service(booking.service_id)
        staff = await self.booking_service.get_staff(booking.staff_id)
        local_start = to_local(booking.start_at, offset)
        return {
            "booking_id": str(booking.id),
            "service": service.name,
            "staff": staff.name,
            "date": local_start.date().isoformat(),
            "time": local_start.strftime("%H:%M"),
            "status": booking.status.value,
        }

    async def list_services(self, args: ListServicesArgs) -> dict:
        services = await self.booking_service.get_services_list()
        return {
            "services": [
                {
                    "id": str(s.id),
                    "name": s.name,
                    "price": str(s.price) if s.price is not None else None,
                    "duration_minutes": int(self.booking_service.service_duration(s) / timedelta(minutes=1)),
                }
                for s in services
            ]
        }

    async def list_staff(self, args: ListStaffArgs) -> dict:
        staff = await self.booking_service.get_staff_list()
        return {"staff": [{"id": str(s.id), "name": s.name, "role": s.role} for s in staff]}

    async def get_client_bookings(self, args: GetClientBookingsArgs) -> dict:
        offset = await self._offset_minutes()
        bookings = await self.booking_service.get_client_bookings(
            self.client_id,
            upcoming_only=args.upcoming_only,
            now=self._now(),
        )
        return {
            "bookings": [
                {
                    "booking_id": str(b.id),
                    "service": b.service.name if b.service else None,
                    "staff": b.staff.name if b.staff else None,
                    "date": to_local(b.start_at, offset).date().isoformat(),
                    "time": to_local(b.start_at, offset).strftime("%H:%M"),
                    "status": b.status.value,
                }
                for b in bookings
            ]
        }

    async def cancel_booking(self, args: CancelBookingArgs) -> dict:
        booking = await self.booking_service.cancel_booking(args.booking_id, self.client_id)
        return {"booking_id": str(booking.id), "status": booking.status.value}
