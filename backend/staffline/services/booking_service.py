"""Booking service - availability search and conflict-checked booking writes."""

import logging
import uuid
from datetime import datetime, date, time, timedelta
from typing import AsyncIterator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError

from staffline.models.booking import Booking, BookingStatus, BookingSlotClaim
from staffline.models.business import Business
from staffline.models.client import Client
from staffline.models.service import Service
from staffline.models.staff import Staff, StaffTimeOff
from staffline.services.availability import (
    Interval,
    Slot,
    claim_buckets,
    fits_open_hours,
    merge_by_start,
    occupancy,
    open_intervals_utc,
    slot_is_free,
    staff_slots,
)
from staffline.exceptions import (
    BookingValidationError,
    ForbiddenError,
    NotFoundError,
    SlotConflictError,
)
from staffline.timezones import get_offset_minutes, to_utc
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

CONFLICT_HINT = "Offer the client the nearest free slots from check_availability."


class BookingService:
    """Service for availability and booking operations of one business."""

    def __init__(self, db: AsyncSession, business_id: UUID):
        self.db = db
        self.business_id = business_id
        self.step = timedelta(minutes=settings.SLOT_STEP_MINUTES)
        self.buffer = timedelta(minutes=settings.BOOKING_BUFFER_MINUTES)
        self.granularity = timedelta(minutes=settings.SLOT_CLAIM_GRANULARITY_MINUTES)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_business(self) -> Business:
        business = await self.db.get(Business, self.business_id)
        if not business:
            raise NotFoundError("Business not found")
        return business

    async def get_services_list(self) -> List[Service]:
        """Active services of the business."""
        result = await self.db.execute(
            select(Service)
            .where(Service.business_id == self.business_id, Service.is_active == True)
            .order_by(Service.created_at, Service.name)
        )
        return list(result.scalars())

    async def get_staff_list(self) -> List[Staff]:
        """Active staff in insertion order."""
        result = await self.db.execute(
            select(Staff)
            .where(Staff.business_id == self.business_id, Staff.is_active == True)
            .order_by(Staff.created_at, Staff.id)
        )
        return list(result.scalars())

    async def get_service(self, service_id: UUID) -> Service:
        result = await self.db.execute(
            select(Service).where(
                Service.id == service_id,
                Service.business_id == self.business_id,
                Service.is_active == True,
            )
        )
        service = result.scalar_one_or_none()
        if not service:
            raise NotFoundError("Service not found")
        return service

    async def get_staff(self, staff_id: UUID) -> Staff:
        result = await self.db.execute(
            select(Staff).where(
                Staff.id == staff_id,
                Staff.business_id == self.business_id,
                Staff.is_active == True,
            )
        )
        staff = result.scalar_one_or_none()
        if not staff:
            raise NotFoundError("Staff member not found")
        return staff

    async def _get_client(self, client_id: UUID) -> Client:
        result = await self.db.execute(
            select(Client).where(
                Client.id == client_id,
                Client.business_id == self.business_id,
            )
        )
        client = result.scalar_one_or_none()
        if not client:
            raise NotFoundError("Client not found")
        return client

    def service_duration(self, service: Service) -> timedelta:
        return timedelta(minutes=service.duration_minutes or settings.DEFAULT_SERVICE_DURATION_MINUTES)

    async def _busy_spans(
        self,
        staff_ids: Sequence[UUID],
        window_start: datetime,
        window_end: datetime,
    ) -> dict:
        """Occupancy spans of live bookings per staff member."""
        result = await self.db.execute(
            select(Booking.staff_id, Booking.start_at, Booking.end_at).where(
                Booking.business_id == self.business_id,
                Booking.staff_id.in_(staff_ids),
                Booking.status != BookingStatus.CANCELLED,
                Booking.start_at < window_end,
                Booking.end_at > window_start,
            )
        )
        spans = {staff_id: [] for staff_id in staff_ids}
        for staff_id, start_at, end_at in result.all():
            spans[staff_id].append(occupancy(start_at, end_at, self.buffer, self.granularity))
        return spans

    async def _time_off(
        self,
        staff_ids: Sequence[UUID],
        window_start: datetime,
        window_end: datetime,
    ) -> dict:
        result = await self.db.execute(
            select(StaffTimeOff.staff_id, StaffTimeOff.start_at, StaffTimeOff.end_at).where(
                StaffTimeOff.business_id == self.business_id,
                StaffTimeOff.staff_id.in_(staff_ids),
                StaffTimeOff.start_at < window_end,
                StaffTimeOff.end_at > window_start,
            )
        )
        intervals = {staff_id: [] for staff_id in staff_ids}
        for staff_id, start_at, end_at in result.all():
            intervals[staff_id].append((start_at, end_at))
        return intervals

    # -------------------------------------------------------------------------
    # Availability
    # -------------------------------------------------------------------------

    async def check_availability(
        self,
        service_id: UUID,
        date_from: date,
        date_to: date,
        staff_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> AsyncIterator[Slot]:
        """
        Yield free slots between two business-local dates (inclusive),
        ascending by start time, ties broken by staff insertion order.
        """
        if date_to < date_from:
            raise BookingValidationError("date_to must not be before date_from")
        if (date_to - date_from).days + 1 > settings.MAX_AVAILABILITY_DAYS:
            raise BookingValidationError(
                f"Date range is limited to {settings.MAX_AVAILABILITY_DAYS} days"
            )

        now = now or datetime.utcnow()
        business = await self.get_business()
        service = await self.get_service(service_id)
        staff_members = [await self.get_staff(staff_id)] if staff_id else await self.get_staff_list()
        if not staff_members:
            return

        offset = get_offset_minutes(business.timezone)
        duration = self.service_duration(service)
        staff_ids = [member.id for member in staff_members]

        window_start = to_utc(datetime.combine(date_from, time.min), offset) - timedelta(days=1)
        window_end = to_utc(datetime.combine(date_to, time.min), offset) + timedelta(days=2)
        busy = await self._busy_spans(staff_ids, window_start, window_end)
        time_off = await self._time_off(staff_ids, window_start, window_end)

        # Local days do not overlap in UTC, so per-day merges concatenate in order
        for _, open_start, open_end in open_intervals_utc(business.working_hours, offset, date_from, date_to):
            streams = [
                staff_slots(
                    member.id, member.name, open_start, open_end, duration, self.step,
                    busy[member.id], time_off[member.id], now, offset,
                    self.buffer, self.granularity,
                )
                for member in staff_members
            ]
            for slot in merge_by_start(streams):
                yield slot

    async def find_slots(
        self,
        service_id: UUID,
        date_from: date,
        date_to: date,
        staff_id: Optional[UUID] = None,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> List[Slot]:
        """Collect up to limit slots from check_availability."""
        slots = []
        async for slot in self.check_availability(service_id, date_from, date_to, staff_id, now):
            slots.append(slot)
            if len(slots) >= limit:
                break
        return slots

    # -------------------------------------------------------------------------
    # Bookings
    # -------------------------------------------------------------------------

    async def create_booking(
        self,
        service_id: UUID,
        staff_id: UUID,
        client_id: UUID,
        start_at: datetime,
        client_name: Optional[str] = None,
        client_phone: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Create a confirmed booking.

        The slot is re-validated against current state, and the claim rows
        inserted with the booking make a concurrent overlapping insert fail
        on the (staff_id, bucket) unique constraint. Either the booking and
        all its claims commit, or nothing does.
        """
        now = now or datetime.utcnow()
        business = await self.get_business()
        service = await self.get_service(service_id)
        await self.get_staff(staff_id)
        await self._get_client(client_id)

        start_at = start_at.replace(second=0, microsecond=0)
        end_at = start_at + self.service_duration(service)

        # Same client asking for the same slot again gets the same booking
        result = await self.db.execute(
            select(Booking).where(
                Booking.business_id == self.business_id,
                Booking.client_id == client_id,
                Booking.staff_id == staff_id,
                Booking.service_id == service_id,
                Booking.start_at == start_at,
                Booking.status == BookingStatus.CONFIRMED,
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        if start_at <= now:
            raise BookingValidationError("Cannot book a time in the past")

        offset = get_offset_minutes(business.timezone)
        if not fits_open_hours(start_at, end_at, business.working_hours, offset):
            raise BookingValidationError("Requested time is outside working hours")

        # Row lock on PostgreSQL narrows the race; the claims decide it
        await self.db.execute(
            select(Staff.id).where(Staff.id == staff_id).with_for_update()
        )
        window_start, window_end = start_at - timedelta(days=1), end_at + timedelta(days=1)
        busy = await self._busy_spans([staff_id], window_start, window_end)
        time_off = await self._time_off([staff_id], window_start, window_end)
        if not slot_is_free(start_at, end_at, busy[staff_id], time_off[staff_id], self.buffer, self.granularity):
            raise SlotConflictError("Time slot is no longer available", hint=CONFLICT_HINT)

        booking = Booking(
            id=uuid.uuid4(),
            business_id=self.business_id,
            staff_id=staff_id,
            service_id=service_id,
            client_id=client_id,
            start_at=start_at,
            end_at=end_at,
            status=BookingStatus.CONFIRMED,
            client_name=client_name,
            client_phone=client_phone,
            notes=notes,
        )
        self.db.add(booking)
        self.db.add_all([
            BookingSlotClaim(
                business_id=self.business_id,
                booking_id=booking.id,
                staff_id=staff_id,
                bucket=bucket,
            )
            for bucket in claim_buckets(start_at, end_at, self.buffer, self.granularity)
        ])

        try:
            await self.db.flush()
            await self.db.execute(
                update(Client)
                .where(Client.id == client_id)
                .values(total_visits=Client.total_visits + 1, last_visit_at=start_at)
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Slot conflict for staff %s at %s", staff_id, start_at)
            raise SlotConflictError("Time slot is no longer available", hint=CONFLICT_HINT)

        logger.info("Booking %s created for staff %s at %s", booking.id, staff_id, start_at)
        return booking

    async def get_client_bookings(
        self,
        client_id: UUID,
        upcoming_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[Booking]:
        """Client's bookings ordered by start time ascending."""
        query = (
            select(Booking)
            .options(selectinload(Booking.service), selectinload(Booking.staff))
            .where(
                Booking.business_id == self.business_id,
                Booking.client_id == client_id,
            )
        )
        if upcoming_only:
            query = query.where(
                Booking.start_at > (now or datetime.utcnow()),
                Booking.status == BookingStatus.CONFIRMED,
            )
        result = await self.db.execute(query.order_by(Booking.start_at))
        return list(result.scalars())

    async def cancel_booking(self, booking_id: UUID, client_id: UUID) -> Booking:
        """
        Cancel a client's booking and release its slot.
        Cancelling an already cancelled booking returns it unchanged.
        """
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id, Booking.business_id == self.business_id)
            .with_for_update()
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")
        if booking.client_id != client_id:
            raise ForbiddenError("Cannot cancel another client's booking")
        if booking.status == BookingStatus.CANCELLED:
            return booking
        if booking.status == BookingStatus.COMPLETED:
            raise BookingValidationError("Completed bookings cannot be cancelled")

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = datetime.utcnow()
        await self.db.execute(
            delete(BookingSlotClaim).where(BookingSlotClaim.booking_id == booking.id)
        )
        await self.db.commit()
        await self.db.refresh(booking)

        logger.info("Booking %s cancelled by client %s", booking.id, client_id)
        return booking

    async def mark_completed(self, booking_id: UUID, now: Optional[datetime] = None) -> bool:
        """confirmed -> completed. Returns False when the booking was not confirmed."""
        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.business_id == self.business_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            .values(status=BookingStatus.COMPLETED, completed_at=now or datetime.utcnow())
        )
        await self.db.commit()
        return result.rowcount > 0

    async def record_review_request(self, booking_id: UUID, now: datetime) -> None:
        await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.business_id == self.business_id)
            .values(review_requested_at=now)
        )
        await self.db.commit()
