import asyncio
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from staffline.exceptions import BookingValidationError, ForbiddenError, NotFoundError, SlotConflictError
from staffline.models import Booking, BookingSlotClaim, BookingStatus, Business, Client, Service, StaffTimeOff
from staffline.services.booking_service import BookingService

from conftest import NOW

TUESDAY = date(2025, 3, 11)
# 10:00 local in Tashkent
TUESDAY_10 = datetime(2025, 3, 11, 5, 0)


async def test_availability_uses_business_local_hours(db, seed):
    service = BookingService(db, seed.business_id)
    slots = await service.find_slots(seed.service_id, TUESDAY, TUESDAY, limit=100, now=NOW)

    # 09:00..17:00 local every 30 minutes, for two staff members
    assert len(slots) == 34
    first, second = slots[0], slots[1]
    assert first.start_at == datetime(2025, 3, 11, 4, 0)
    assert first.local_start == datetime(2025, 3, 11, 9, 0)
    assert (first.staff_name, second.staff_name) == ("Anna", "Boris")
    assert slots[-1].local_start == datetime(2025, 3, 11, 17, 0)
    assert [s.start_at for s in slots] == sorted(s.start_at for s in slots)


async def test_availability_excludes_past_times_today(db, seed):
    service = BookingService(db, seed.business_id)
    # 12:00 local on Monday
    now = datetime(2025, 3, 10, 7, 0)
    slots = await service.find_slots(seed.service_id, date(2025, 3, 10), date(2025, 3, 10), limit=100, now=now)
    assert slots
    assert all(slot.start_at > now for slot in slots)
    assert slots[0].local_start == datetime(2025, 3, 10, 12, 30)


async def test_booked_time_disappears_from_availability(db, seed):
    service = BookingService(db, seed.business_id)
    await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)

    slots = await service.find_slots(seed.service_id, TUESDAY, TUESDAY, staff_id=seed.anna_id, limit=100, now=NOW)
    local_times = [slot.local_start.strftime("%H:%M") for slot in slots]
    assert "09:00" in local_times
    assert "09:30" not in local_times
    assert "10:00" not in local_times
    assert "10:30" not in local_times
    assert "11:00" in local_times

    boris = await service.find_slots(seed.service_id, TUESDAY, TUESDAY, staff_id=seed.boris_id, limit=100, now=NOW)
    assert "10:00" in [slot.local_start.strftime("%H:%M") for slot in boris]


async def test_every_offered_slot_can_be_booked(db, seed):
    service = BookingService(db, seed.business_id)
    slots = await service.find_slots(seed.service_id, TUESDAY, TUESDAY, limit=100, now=NOW)

    slot = slots[5]
    booking = await service.create_booking(seed.service_id, slot.staff_id, seed.client_id, slot.start_at, now=NOW)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.end_at - booking.start_at == timedelta(minutes=60)

    with pytest.raises(SlotConflictError) as excinfo:
        await service.create_booking(seed.service_id, slot.staff_id, seed.other_client_id, slot.start_at, now=NOW)
    assert excinfo.value.hint


async def test_time_off_blocks_availability(db, seed):
    db.add(StaffTimeOff(
        business_id=seed.business_id,
        staff_id=seed.anna_id,
        start_at=datetime(2025, 3, 11, 4, 0),
        end_at=datetime(2025, 3, 11, 13, 0),
        reason="Vacation",
    ))
    await db.commit()

    service = BookingService(db, seed.business_id)
    slots = await service.find_slots(seed.service_id, TUESDAY, TUESDAY, limit=100, now=NOW)
    assert {slot.staff_name for slot in slots} == {"Boris"}

    with pytest.raises(SlotConflictError):
        await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)


async def test_concurrent_bookings_for_same_slot(session_factory, seed):
    async def attempt(client_id):
        async with session_factory() as session:
            service = BookingService(session, seed.business_id)
            return await service.create_booking(seed.service_id, seed.anna_id, client_id, TUESDAY_10, now=NOW)

    outcomes = await asyncio.gather(
        attempt(seed.client_id),
        attempt(seed.other_client_id),
        return_exceptions=True,
    )

    successes = [o for o in outcomes if isinstance(o, Booking)]
    conflicts = [o for o in outcomes if isinstance(o, SlotConflictError)]
    assert len(successes) == 1
    assert len(conflicts) == 1

    async with session_factory() as session:
        count = (await session.execute(
            select(func.count(Booking.id)).where(Booking.staff_id == seed.anna_id)
        )).scalar_one()
        claims = (await session.execute(
            select(func.count(BookingSlotClaim.id)).where(BookingSlotClaim.staff_id == seed.anna_id)
        )).scalar_one()
    assert count == 1
    assert claims == 12


async def test_overlapping_but_not_identical_start_conflicts(db, seed):
    service = BookingService(db, seed.business_id)
    await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    with pytest.raises(SlotConflictError):
        await service.create_booking(
            seed.service_id, seed.anna_id, seed.other_client_id, TUESDAY_10 + timedelta(minutes=30), now=NOW
        )
    # Back to back is fine
    booking = await service.create_booking(
        seed.service_id, seed.anna_id, seed.other_client_id, TUESDAY_10 + timedelta(hours=1), now=NOW
    )
    assert booking.start_at == TUESDAY_10 + timedelta(hours=1)


async def test_repeated_create_returns_same_booking(db, seed):
    service = BookingService(db, seed.business_id)
    first = await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    second = await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    assert first.id == second.id

    visits = (await db.execute(select(Client.total_visits).where(Client.id == seed.client_id))).scalar_one()
    assert visits == 1


async def test_create_rejects_past_and_closed_times(db, seed):
    service = BookingService(db, seed.business_id)
    with pytest.raises(BookingValidationError):
        await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, NOW - timedelta(hours=1), now=NOW)
    with pytest.raises(BookingValidationError):
        # 20:00 local
        await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, datetime(2025, 3, 11, 15, 0), now=NOW)


async def test_create_with_unknown_references(db, seed):
    import uuid

    service = BookingService(db, seed.business_id)
    with pytest.raises(NotFoundError):
        await service.create_booking(uuid.uuid4(), seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    with pytest.raises(NotFoundError):
        await service.create_booking(seed.service_id, uuid.uuid4(), seed.client_id, TUESDAY_10, now=NOW)


async def test_cancel_is_idempotent_and_frees_the_slot(db, seed):
    service = BookingService(db, seed.business_id)
    booking = await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)

    cancelled = await service.cancel_booking(booking.id, seed.client_id)
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    again = await service.cancel_booking(booking.id, seed.client_id)
    assert again.status == BookingStatus.CANCELLED
    assert again.cancelled_at == cancelled.cancelled_at

    rebooked = await service.create_booking(seed.service_id, seed.anna_id, seed.other_client_id, TUESDAY_10, now=NOW)
    assert rebooked.id != booking.id


async def test_cancel_other_clients_booking_is_forbidden(db, seed):
    import uuid

    service = BookingService(db, seed.business_id)
    booking = await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    with pytest.raises(ForbiddenError):
        await service.cancel_booking(booking.id, seed.other_client_id)
    with pytest.raises(NotFoundError):
        await service.cancel_booking(uuid.uuid4(), seed.client_id)


async def test_completed_booking_cannot_be_cancelled(db, seed):
    service = BookingService(db, seed.business_id)
    booking = await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    assert await service.mark_completed(booking.id, NOW)
    assert not await service.mark_completed(booking.id, NOW)
    with pytest.raises(BookingValidationError):
        await service.cancel_booking(booking.id, seed.client_id)


async def test_availability_range_limits(db, seed):
    service = BookingService(db, seed.business_id)
    with pytest.raises(BookingValidationError):
        await service.find_slots(seed.service_id, TUESDAY, TUESDAY - timedelta(days=1), now=NOW)
    with pytest.raises(BookingValidationError):
        await service.find_slots(seed.service_id, TUESDAY, TUESDAY + timedelta(days=30), now=NOW)


async def test_business_without_staff_has_no_slots(db):
    business = Business(name="Empty", timezone="Asia/Tashkent", bot_token="t")
    db.add(business)
    await db.flush()
    haircut = Service(business_id=business.id, name="Haircut", duration_minutes=60)
    db.add(haircut)
    await db.commit()

    service = BookingService(db, business.id)
    assert await service.find_slots(haircut.id, TUESDAY, TUESDAY, now=NOW) == []


async def test_client_bookings_upcoming_only(db, seed):
    service = BookingService(db, seed.business_id)
    booking = await service.create_booking(seed.service_id, seed.anna_id, seed.client_id, TUESDAY_10, now=NOW)
    other = await service.create_booking(
        seed.service_id, seed.boris_id, seed.client_id, TUESDAY_10 + timedelta(hours=2), now=NOW
    )
    await service.cancel_booking(other.id, seed.client_id)

    upcoming = await service.get_client_bookings(seed.client_id, upcoming_only=True, now=NOW)
    assert [b.id for b in upcoming] == [booking.id]
    assert upcoming[0].service.name == "Haircut"

    everything = await service.get_client_bookings(seed.client_id, now=NOW)
    assert len(everything) == 2
