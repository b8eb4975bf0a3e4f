from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from staffline.models import (
    AutomationKind,
    AutomationRun,
    AutomationRunStatus,
    AutomationSettings,
    Booking,
    BookingStatus,
    Business,
    Client,
)
from staffline.services.automation_messages import format_local_datetime, reactivation_text, reminder_text
from staffline.services.automation_service import AutomationScheduler, reminder_is_due

from conftest import NOW, FakeSender


def make_scheduler(session_factory, sender):
    return AutomationScheduler(
        session_factory=session_factory,
        sender_factory=lambda business: sender,
        batch_size=2,
        batch_delay=0,
    )


async def add_booking(db, seed, start_at, client_id=None, status=BookingStatus.CONFIRMED, minutes=60):
    booking = Booking(
        business_id=seed.business_id,
        staff_id=seed.anna_id,
        service_id=seed.service_id,
        client_id=client_id or seed.client_id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=minutes),
        status=status,
    )
    db.add(booking)
    await db.commit()
    return booking.id


async def runs(db, kind):
    return (await db.execute(select(AutomationRun).where(AutomationRun.kind == kind))).scalars().all()


def test_reminder_window_boundaries():
    assert reminder_is_due(1440, 1440, 60)
    assert reminder_is_due(1381, 1440, 60)
    assert not reminder_is_due(1380, 1440, 60)
    assert not reminder_is_due(1441, 1440, 60)


def test_message_texts():
    local = datetime(2025, 3, 15, 14, 30)
    assert format_local_datetime(local, "ru") == "15 марта в 14:30"
    assert format_local_datetime(local, "en") == "15 March at 14:30"
    assert reminder_text("en", "24h", local, "Dana", "Haircut", None).startswith("Hello, Dana!")
    assert "Tomorrow, 15 March at 14:30" in reminder_text("en", "24h", local, "Dana", "Haircut", None)
    assert "Promo code" not in reactivation_text("en", "Dana", 45, 15)
    assert "WELCOME15" in reactivation_text("en", "Dana", 70, 15)
    assert "last offer" in reactivation_text("en", "Dana", 120, 15)


async def test_reminder_sent_exactly_once(db, session_factory, seed, sender):
    await add_booking(db, seed, NOW + timedelta(hours=24, minutes=-10))
    scheduler = make_scheduler(session_factory, sender)

    first = await scheduler.send_reminders(NOW)
    second = await scheduler.send_reminders(NOW + timedelta(minutes=15))

    assert first == {"processed": 1, "sent": 1, "failed": 0, "skipped": 0}
    assert second == {"processed": 1, "sent": 0, "failed": 0, "skipped": 1}
    assert len(sender.sent) == 1
    channel_id, body = sender.sent[0]
    assert channel_id == "1001"
    # 03:50 UTC is 08:50 in Tashkent
    assert "11 March at 08:50" in body
    assert "12 Navoi St" in body

    recorded = await runs(db, AutomationKind.REMINDER)
    assert [(r.key, r.status) for r in recorded] == [("24h", AutomationRunStatus.SENT)]


async def test_each_lead_gets_its_own_reminder(db, session_factory, seed, sender):
    start = NOW + timedelta(hours=24, minutes=-5)
    await add_booking(db, seed, start)
    scheduler = make_scheduler(session_factory, sender)

    await scheduler.send_reminders(NOW)
    await scheduler.send_reminders(start - timedelta(hours=2))

    keys = sorted(r.key for r in await runs(db, AutomationKind.REMINDER))
    assert keys == ["24h", "2h"]
    assert len(sender.sent) == 2


async def test_no_reminder_outside_windows_or_for_cancelled(db, session_factory, seed, sender):
    await add_booking(db, seed, NOW + timedelta(hours=5))
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-5), status=BookingStatus.CANCELLED)

    summary = await make_scheduler(session_factory, sender).send_reminders(NOW)

    assert summary["processed"] == 0
    assert sender.sent == []


async def test_failed_reminder_is_noted_and_retried(db, session_factory, seed):
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-5))

    failing = FakeSender(fail_for={"1001"}, transient=True)
    summary = await make_scheduler(session_factory, failing).send_reminders(NOW)
    assert summary["failed"] == 1

    [run] = await runs(db, AutomationKind.REMINDER)
    assert run.status == AutomationRunStatus.FAILED
    assert "timed out" in run.error
    notes = (await db.execute(select(Client.notes).where(Client.id == seed.client_id))).scalar_one()
    assert "reminder message not delivered" in notes

    working = FakeSender()
    summary = await make_scheduler(session_factory, working).send_reminders(NOW + timedelta(minutes=5))
    assert summary["sent"] == 1
    assert len(working.sent) == 1

    async with session_factory() as fresh:
        [run] = await runs(fresh, AutomationKind.REMINDER)
    assert run.status == AutomationRunStatus.SENT
    assert run.attempts == 2


async def test_blocked_reminder_is_not_retried(db, session_factory, seed):
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-5))

    summary = await make_scheduler(session_factory, FakeSender(fail_for={"1001"})).send_reminders(NOW)
    assert summary["failed"] == 1

    working = FakeSender()
    summary = await make_scheduler(session_factory, working).send_reminders(NOW + timedelta(minutes=5))
    assert summary == {"processed": 1, "sent": 0, "failed": 0, "skipped": 1}
    assert working.sent == []

    async with session_factory() as fresh:
        [run] = await runs(fresh, AutomationKind.REMINDER)
    assert run.status == AutomationRunStatus.UNDELIVERABLE


async def test_reminder_retries_stop_after_max_attempts(db, session_factory, seed):
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-1))
    failing = FakeSender(fail_for={"1001"}, transient=True)
    scheduler = make_scheduler(session_factory, failing)

    summaries = [await scheduler.send_reminders(NOW + timedelta(minutes=5 * tick)) for tick in range(6)]

    assert [s["failed"] for s in summaries] == [1, 1, 1, 0, 0, 0]
    assert [s["skipped"] for s in summaries] == [0, 0, 0, 1, 1, 1]
    assert failing.attempted == ["1001"] * 3

    async with session_factory() as fresh:
        [run] = await runs(fresh, AutomationKind.REMINDER)
        notes = (await fresh.execute(select(Client.notes).where(Client.id == seed.client_id))).scalar_one()
    assert run.attempts == 3
    assert notes.count("not delivered") == 3


async def test_one_failed_delivery_does_not_stop_the_batch(db, session_factory, seed):
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-5))
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-10), client_id=seed.other_client_id)

    sender = FakeSender(fail_for={"1001"})
    summary = await make_scheduler(session_factory, sender).send_reminders(NOW)

    assert summary == {"processed": 2, "sent": 1, "failed": 1, "skipped": 0}
    assert [channel for channel, _ in sender.sent] == ["1002"]


async def test_disabled_or_unreachable_business_is_skipped(db, session_factory, seed, sender):
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-5))
    db.add(AutomationSettings(business_id=seed.business_id, reminders_enabled=False))
    await db.commit()

    scheduler = make_scheduler(session_factory, sender)
    assert (await scheduler.send_reminders(NOW))["processed"] == 0

    await db.execute(update(AutomationSettings).values(reminders_enabled=True))
    await db.execute(update(Business).values(bot_token=None))
    await db.commit()
    assert (await scheduler.send_reminders(NOW))["processed"] == 0

    await db.execute(update(Business).values(bot_token="test-token", plan_expires_at=NOW - timedelta(days=1)))
    await db.commit()
    assert (await scheduler.send_reminders(NOW))["processed"] == 0
    assert sender.sent == []


async def test_review_requested_once_after_visit(db, session_factory, seed, sender):
    booking_id = await add_booking(db, seed, NOW - timedelta(hours=4))
    scheduler = make_scheduler(session_factory, sender)

    first = await scheduler.send_review_requests(NOW)
    second = await scheduler.send_review_requests(NOW + timedelta(minutes=15))

    assert first["sent"] == 1
    assert second["processed"] == 0
    assert len(sender.sent) == 1
    assert "Haircut" in sender.sent[0][1]

    async with session_factory() as fresh:
        booking = await fresh.get(Booking, booking_id)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.review_requested_at == NOW


async def test_review_waits_for_the_delay(db, session_factory, seed, sender):
    # Ended 30 minutes ago; the default delay is two hours
    await add_booking(db, seed, NOW - timedelta(minutes=90))
    summary = await make_scheduler(session_factory, sender).send_review_requests(NOW)
    assert summary["processed"] == 0


async def test_reactivation_respects_cooldown(db, session_factory, seed, sender):
    await db.execute(
        update(Client).where(Client.id == seed.client_id).values(last_visit_at=NOW - timedelta(days=45))
    )
    await db.execute(
        update(Client).where(Client.id == seed.other_client_id).values(
            last_visit_at=NOW - timedelta(days=45), last_reactivation_at=NOW - timedelta(days=10)
        )
    )
    await db.commit()
    scheduler = make_scheduler(session_factory, sender)

    first = await scheduler.send_reactivation(NOW)
    second = await scheduler.send_reactivation(NOW + timedelta(days=1))

    assert first["sent"] == 1
    assert second["processed"] == 0
    assert [channel for channel, _ in sender.sent] == ["1001"]
    assert "45 days ago" in sender.sent[0][1]

    stamp = (await db.execute(
        select(Client.last_reactivation_at).where(Client.id == seed.client_id)
    )).scalar_one()
    assert stamp == NOW


async def test_failed_reactivation_releases_the_cooldown(db, session_factory, seed):
    await db.execute(
        update(Client).where(Client.id == seed.client_id).values(last_interaction_at=NOW - timedelta(days=70))
    )
    await db.commit()

    failing = FakeSender(fail_for={"1001"}, transient=True)
    summary = await make_scheduler(session_factory, failing).send_reactivation(NOW)
    assert summary["failed"] == 1

    stamp, notes = (await db.execute(
        select(Client.last_reactivation_at, Client.notes).where(Client.id == seed.client_id)
    )).one()
    assert stamp is None
    assert "reactivation message not delivered" in notes


async def test_blocked_client_keeps_the_reactivation_cooldown(db, session_factory, seed):
    await db.execute(
        update(Client).where(Client.id == seed.client_id).values(last_interaction_at=NOW - timedelta(days=70))
    )
    await db.commit()
    scheduler = make_scheduler(session_factory, FakeSender(fail_for={"1001"}))

    first = await scheduler.send_reactivation(NOW)
    second = await scheduler.send_reactivation(NOW + timedelta(days=1))

    assert first["failed"] == 1
    assert second["processed"] == 0
    async with session_factory() as fresh:
        stamp = (await fresh.execute(
            select(Client.last_reactivation_at).where(Client.id == seed.client_id)
        )).scalar_one()
    assert stamp == NOW


async def test_repeated_reactivation_failures_leave_bounded_notes(db, session_factory, seed):
    await db.execute(
        update(Client).where(Client.id == seed.client_id).values(last_interaction_at=NOW - timedelta(days=70))
    )
    await db.commit()
    failing = FakeSender(fail_for={"1001"}, transient=True)
    scheduler = make_scheduler(session_factory, failing)

    for tick in range(50):
        await scheduler.send_reactivation(NOW + timedelta(minutes=15 * tick))

    assert failing.attempted == ["1001"] * 3
    async with session_factory() as fresh:
        notes, stamp = (await fresh.execute(
            select(Client.notes, Client.last_reactivation_at).where(Client.id == seed.client_id)
        )).one()
        [run] = await runs(fresh, AutomationKind.REACTIVATION)
    assert notes.count("not delivered") == 3
    assert stamp == NOW + timedelta(minutes=45)
    assert (run.key, run.status, run.attempts) == ("first", AutomationRunStatus.FAILED, 3)


async def test_recently_active_client_is_not_reactivated(db, session_factory, seed, sender):
    await db.execute(
        update(Client).where(Client.id == seed.client_id).values(
            last_visit_at=NOW - timedelta(days=60), last_interaction_at=NOW - timedelta(days=2)
        )
    )
    await db.commit()
    summary = await make_scheduler(session_factory, sender).send_reactivation(NOW)
    assert summary["processed"] == 0


async def test_run_isolates_a_crashing_job(db, session_factory, seed, sender):
    await add_booking(db, seed, NOW + timedelta(hours=2, minutes=-5))
    scheduler = make_scheduler(session_factory, sender)

    async def explode(now=None):
        raise RuntimeError("review job exploded")

    scheduler.send_review_requests = explode
    report = await scheduler.run(NOW)

    assert report["reviews"] == {"error": "review job exploded"}
    assert report["reminders"]["sent"] == 1
    assert report["reactivation"] == {"processed": 0, "sent": 0, "failed": 0, "skipped": 0}


@pytest.mark.parametrize("leads, expected", [
    ([], 0),
    ([{"name": "3h", "lead_minutes": 180, "window_minutes": 30}], 1),
])
async def test_lead_set_is_configurable(db, session_factory, seed, sender, leads, expected):
    await add_booking(db, seed, NOW + timedelta(hours=3, minutes=-10))
    scheduler = AutomationScheduler(
        session_factory=session_factory,
        sender_factory=lambda business: sender,
        batch_delay=0,
        leads=leads,
    )
    assert (await scheduler.send_reminders(NOW))["sent"] == expected
