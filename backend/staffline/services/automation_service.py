"""
Automation scheduler - reminders, review requests and reactivation messages.

Each job runs in its own session. Every message is claimed through an
AutomationRun row before it is sent (reactivation also stamps the client), so
repeated triggers never deliver the same message twice. A transient send
failure releases its claim so a later trigger can try again, up to
AUTOMATION_MAX_ATTEMPTS; a permanent one (blocked bot, invalid number) is
never retried.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from staffline.database import AsyncSessionLocal
from staffline.models.automation import AutomationKind, AutomationRun, AutomationRunStatus
from staffline.models.booking import Booking, BookingStatus
from staffline.models.business import AutomationSettings, Business
from staffline.models.client import Client
from staffline.models.service import Service
from staffline.schemas.notification import DeliveryResult
from staffline.services.automation_messages import reactivation_text, reminder_text, review_text
from staffline.services.booking_service import BookingService
from staffline.services.context_service import ContextService
from staffline.services.notification_service import NotificationService, send_in_batches
from staffline.timezones import get_offset_minutes, to_local
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_DISCOUNT = 15


@dataclass
class Candidate:
    """One message a job wants to send, reduced to plain values."""

    target_id: UUID
    client_id: UUID
    channel_id: str
    text: str
    key: str = ""
    run_id: Optional[UUID] = None


@dataclass
class Tenant:
    """The parts of a business a job needs once claims start rolling back."""

    id: UUID
    language: Optional[str]
    address: Optional[str]
    offset_minutes: int
    review_delay_hours: int
    idle_days: int
    discount: int
    sender: object


def new_summary() -> Dict[str, int]:
    return {"processed": 0, "sent": 0, "failed": 0, "skipped": 0}


def reminder_is_due(minutes_until: float, lead_minutes: int, window_minutes: int) -> bool:
    """True once the lead time is reached and until the window closes."""
    return lead_minutes - window_minutes < minutes_until <= lead_minutes


def reactivation_cycle(last_reactivation_at: Optional[datetime]) -> str:
    """Run key for one cool-down cycle, named after the stamp it replaces."""
    return last_reactivation_at.isoformat() if last_reactivation_at else "first"


class AutomationScheduler:
    """Runs the time-driven messaging jobs for every eligible business."""

    def __init__(
        self,
        session_factory=None,
        sender_factory: Optional[Callable[[Business], object]] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        leads: Optional[Sequence[dict]] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.sender_factory = sender_factory or NotificationService
        self.batch_size = batch_size or settings.AUTOMATION_BATCH_SIZE
        self.batch_delay = settings.AUTOMATION_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.leads = list(settings.REMINDER_LEADS if leads is None else leads)
        self.max_attempts = max_attempts or settings.AUTOMATION_MAX_ATTEMPTS

    async def run(self, now: Optional[datetime] = None) -> dict:
        """Run all jobs concurrently. A failing job does not stop the others."""
        now = now or datetime.utcnow()
        jobs = {
            "reminders": self.send_reminders,
            "reviews": self.send_review_requests,
            "reactivation": self.send_reactivation,
        }
        outcomes = await asyncio.gather(*(job(now) for job in jobs.values()), return_exceptions=True)

        report = {}
        for name, outcome in zip(jobs, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error("Automation job %s failed: %r", name, outcome)
                report[name] = {"error": str(outcome) or type(outcome).__name__}
            else:
                logger.info("Automation job %s: %s", name, outcome)
                report[name] = outcome
        return report

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def send_reminders(self, now: Optional[datetime] = None) -> dict:
        """One reminder per (booking, lead) pair, sent inside the lead's window."""
        now = now or datetime.utcnow()
        summary = new_summary()
        if not self.leads:
            return summary
        horizon = now + timedelta(minutes=max(lead["lead_minutes"] for lead in self.leads))

        async with self.session_factory() as db:
            for tenant in await self._tenants(db, now, "reminders_enabled"):
                rows = (await db.execute(
                    select(Booking, Client, Service.name)
                    .join(Client, Booking.client_id == Client.id)
                    .outerjoin(Service, Booking.service_id == Service.id)
                    .where(
                        Booking.business_id == tenant.id,
                        Booking.status == BookingStatus.CONFIRMED,
                        Booking.start_at > now,
                        Booking.start_at <= horizon,
                        Client.is_blocked.isnot(True),
                    )
                    .order_by(Booking.start_at)
                )).all()

                local_now = to_local(now, tenant.offset_minutes)
                candidates = []
                for booking, client, service_name in rows:
                    local_start = to_local(booking.start_at, tenant.offset_minutes)
                    minutes_until = (local_start - local_now).total_seconds() / 60
                    for lead in self.leads:
                        if not reminder_is_due(minutes_until, lead["lead_minutes"], lead["window_minutes"]):
                            continue
                        candidates.append(Candidate(
                            target_id=booking.id,
                            client_id=client.id,
                            channel_id=client.channel_id,
                            key=lead["name"],
                            text=reminder_text(
                                tenant.language,
                                lead["name"],
                                local_start,
                                booking.client_name or client.name,
                                service_name,
                                tenant.address,
                            ),
                        ))

                await self._deliver(db, tenant, AutomationKind.REMINDER, candidates, now, summary)

        return summary

    async def send_review_requests(self, now: Optional[datetime] = None) -> dict:
        """Ask for feedback once a visit has been over for the review delay."""
        now = now or datetime.utcnow()
        summary = new_summary()

        async with self.session_factory() as db:
            for tenant in await self._tenants(db, now, "reviews_enabled"):
                ended_before = now - timedelta(hours=tenant.review_delay_hours)
                ended_after = ended_before - timedelta(days=settings.REVIEW_LOOKBACK_DAYS)

                rows = (await db.execute(
                    select(Booking, Client, Service.name)
                    .join(Client, Booking.client_id == Client.id)
                    .outerjoin(Service, Booking.service_id == Service.id)
                    .where(
                        Booking.business_id == tenant.id,
                        Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]),
                        Booking.review_requested_at.is_(None),
                        Booking.end_at <= ended_before,
                        Booking.end_at > ended_after,
                        Client.is_blocked.isnot(True),
                    )
                    .order_by(Booking.end_at)
                )).all()

                confirmed = []
                candidates = []
                for booking, client, service_name in rows:
                    if booking.status == BookingStatus.CONFIRMED:
                        confirmed.append(booking.id)
                    candidates.append(Candidate(
                        target_id=booking.id,
                        client_id=client.id,
                        channel_id=client.channel_id,
                        text=review_text(tenant.language, booking.client_name or client.name, service_name),
                    ))

                bookings = BookingService(db, tenant.id)
                for booking_id in confirmed:
                    await bookings.mark_completed(booking_id, now)

                async def stamp(candidate: Candidate, delivery: DeliveryResult) -> None:
                    await bookings.record_review_request(candidate.target_id, now)

                await self._deliver(db, tenant, AutomationKind.REVIEW, candidates, now, summary, on_sent=stamp)

        return summary

    async def send_reactivation(self, now: Optional[datetime] = None) -> dict:
        """Win back clients who have been idle past the threshold, once per cool-down."""
        now = now or datetime.utcnow()
        summary = new_summary()
        cooldown_cutoff = now - timedelta(days=settings.REACTIVATION_COOLDOWN_DAYS)

        async with self.session_factory() as db:
            for tenant in await self._tenants(db, now, "reactivation_enabled"):
                idle_cutoff = now - timedelta(days=tenant.idle_days)

                clients = (await db.execute(
                    select(Client)
                    .where(
                        Client.business_id == tenant.id,
                        Client.is_blocked.isnot(True),
                        or_(Client.last_visit_at.isnot(None), Client.last_interaction_at.isnot(None)),
                        or_(Client.last_visit_at.is_(None), Client.last_visit_at < idle_cutoff),
                        or_(Client.last_interaction_at.is_(None), Client.last_interaction_at < idle_cutoff),
                        or_(Client.last_reactivation_at.is_(None), Client.last_reactivation_at < cooldown_cutoff),
                    )
                    .order_by(Client.created_at)
                )).scalars().all()

                candidates = []
                previous: Dict[UUID, Optional[datetime]] = {}
                for client in clients:
                    last_active = max(stamp for stamp in (client.last_visit_at, client.last_interaction_at) if stamp)
                    previous[client.id] = client.last_reactivation_at
                    candidates.append(Candidate(
                        target_id=client.id,
                        client_id=client.id,
                        channel_id=client.channel_id,
                        key=reactivation_cycle(client.last_reactivation_at),
                        text=reactivation_text(tenant.language, client.name, (now - last_active).days, tenant.discount),
                    ))

                context = ContextService(db, tenant.id)

                async def claim(candidate: Candidate) -> bool:
                    return await context.stamp_reactivation(candidate.client_id, now, cooldown_cutoff)

                async def release(candidate: Candidate, delivery: DeliveryResult) -> None:
                    # Permanent failures keep the stamp until the cool-down passes
                    if delivery.transient:
                        await context.restore_reactivation(candidate.client_id, now, previous[candidate.client_id])

                await self._deliver(
                    db, tenant, AutomationKind.REACTIVATION, candidates, now, summary,
                    claim=claim, on_failed=release,
                )

        return summary

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    async def _tenants(self, db: AsyncSession, now: datetime, switch: str) -> List[Tenant]:
        """Active, paid-up businesses with a usable channel and the job switched on."""
        rows = (await db.execute(
            select(Business, AutomationSettings)
            .outerjoin(AutomationSettings, AutomationSettings.business_id == Business.id)
            .where(Business.is_active == True)
            .order_by(Business.created_at)
        )).all()

        tenants = []
        for business, prefs in rows:
            if not business.plan_active(now) or not self._has_channel(business):
                continue
            if prefs is not None and getattr(prefs, switch) is False:
                continue
            tenants.append(Tenant(
                id=business.id,
                language=business.language,
                address=business.address,
                offset_minutes=get_offset_minutes(business.timezone),
                review_delay_hours=(prefs and prefs.review_delay_hours) or settings.REVIEW_DELAY_HOURS,
                idle_days=(prefs and prefs.reactivation_idle_days) or settings.REACTIVATION_IDLE_DAYS,
                discount=DEFAULT_DISCOUNT if prefs is None or prefs.reactivation_discount is None else prefs.reactivation_discount,
                sender=self.sender_factory(business),
            ))
        return tenants

    @staticmethod
    def _has_channel(business: Business) -> bool:
        if business.channel == "sms":
            return bool(settings.TWILIO_ACCOUNT_SID and settings.TWILIO_PHONE_NUMBER)
        return bool(business.bot_token)

    async def _handled(self, db: AsyncSession, kind: AutomationKind, candidates: List[Candidate]) -> Set[Tuple[UUID, str]]:
        """(target, key) pairs already sent, in flight, or out of attempts."""
        if not candidates:
            return set()
        rows = (await db.execute(
            select(AutomationRun.target_id, AutomationRun.key)
            .where(
                AutomationRun.kind == kind,
                AutomationRun.target_id.in_({c.target_id for c in candidates}),
                or_(
                    AutomationRun.status.in_([
                        AutomationRunStatus.SENT,
                        AutomationRunStatus.PENDING,
                        AutomationRunStatus.UNDELIVERABLE,
                    ]),
                    and_(
                        AutomationRun.status == AutomationRunStatus.FAILED,
                        AutomationRun.attempts >= self.max_attempts,
                    ),
                ),
            )
        )).all()
        return {(target_id, key) for target_id, key in rows}

    async def _claim_run(
        self,
        db: AsyncSession,
        business_id: UUID,
        kind: AutomationKind,
        candidate: Candidate,
        now: datetime,
    ) -> Optional[UUID]:
        """
        Insert the run row, or take over a failed one. Returns the run id, or
        None when another trigger already owns this message.
        """
        run_id = uuid.uuid4()
        db.add(AutomationRun(
            id=run_id,
            business_id=business_id,
            kind=kind,
            target_id=candidate.target_id,
            key=candidate.key,
            status=AutomationRunStatus.PENDING,
            created_at=now,
            updated_at=now,
        ))
        try:
            await db.commit()
            return run_id
        except IntegrityError:
            await db.rollback()

        same_run = and_(
            AutomationRun.kind == kind,
            AutomationRun.target_id == candidate.target_id,
            AutomationRun.key == candidate.key,
        )
        result = await db.execute(
            update(AutomationRun)
            .where(
                same_run,
                AutomationRun.status == AutomationRunStatus.FAILED,
                AutomationRun.attempts < self.max_attempts,
            )
            .values(
                status=AutomationRunStatus.PENDING,
                attempts=AutomationRun.attempts + 1,
                error=None,
                updated_at=now,
            )
        )
        await db.commit()
        if result.rowcount != 1:
            return None
        return (await db.execute(select(AutomationRun.id).where(same_run))).scalar_one()

    async def _finish_run(self, db: AsyncSession, run_id: UUID, delivery: DeliveryResult, now: datetime) -> None:
        if delivery.success:
            values = {"status": AutomationRunStatus.SENT, "sent_at": now, "error": None}
        elif delivery.transient:
            values = {"status": AutomationRunStatus.FAILED, "error": delivery.error}
        else:
            values = {"status": AutomationRunStatus.UNDELIVERABLE, "error": delivery.error}
        await db.execute(update(AutomationRun).where(AutomationRun.id == run_id).values(updated_at=now, **values))
        await db.commit()

    async def _deliver(
        self,
        db: AsyncSession,
        tenant: Tenant,
        kind: AutomationKind,
        candidates: List[Candidate],
        now: datetime,
        summary: Dict[str, int],
        claim: Optional[Callable[[Candidate], Awaitable[bool]]] = None,
        on_sent: Optional[Callable[[Candidate, DeliveryResult], Awaitable[None]]] = None,
        on_failed: Optional[Callable[[Candidate, DeliveryResult], Awaitable[None]]] = None,
    ) -> None:
        """
        Claim, send in batches, then record each outcome. claim, when given, runs
        before the AutomationRun claim; if it succeeds and the run cannot be
        claimed, whatever claim changed is left in place.
        """
        summary["processed"] += len(candidates)

        handled = await self._handled(db, kind, candidates)
        claimed = []
        for candidate in candidates:
            owned = await claim(candidate) if claim else True
            if owned and (candidate.target_id, candidate.key) in handled:
                owned = False
            elif owned:
                candidate.run_id = await self._claim_run(db, tenant.id, kind, candidate, now)
                owned = candidate.run_id is not None
            if owned:
                claimed.append(candidate)
            else:
                summary["skipped"] += 1

        if not claimed:
            return

        results = await send_in_batches(
            tenant.sender,
            [(candidate, candidate.channel_id, candidate.text) for candidate in claimed],
            self.batch_size,
            self.batch_delay,
        )

        context = ContextService(db, tenant.id)
        for candidate, delivery in results:
            await self._finish_run(db, candidate.run_id, delivery, now)

            if delivery.success:
                summary["sent"] += 1
                if on_sent:
                    await on_sent(candidate, delivery)
                continue

            summary["failed"] += 1
            logger.warning(
                "%s to client %s failed for business %s: %s",
                kind.value, candidate.client_id, tenant.id, delivery.error,
            )
            if on_failed:
                await on_failed(candidate, delivery)
            await context.add_client_note(
                candidate.client_id,
                f"Automated {kind.value} message not delivered: {delivery.error}",
                now,
            )
