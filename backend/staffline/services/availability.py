"""
Pure slot arithmetic shared by availability search and booking creation.

Both paths measure a booking's footprint the same way (start rounded down and
end plus buffer rounded up to the claim granularity), so every slot offered
by the search maps onto claim buckets that a booking insert can take.
"""

import heapq
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID

from staffline.timezones import to_local, to_utc

EPOCH = datetime(2000, 1, 1)
DEFAULT_OPEN = (time(9, 0), time(18, 0))
WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# Free-text schedules such as "Пн-Пт: 09:00-18:00, Сб: 10:00-16:00"
_TIME_RANGE = re.compile(r"(\d{1,2}):(\d{2})\s*[-–—]\s*(\d{1,2}):(\d{2})")
_FROM_TO_HOURS = re.compile(r"с\s*(\d{1,2})\s*до\s*(\d{1,2})", re.IGNORECASE)
_DAY_TOKENS = {
    "пн-пт": (0, 1, 2, 3, 4),
    "пн-сб": (0, 1, 2, 3, 4, 5),
    "будни": (0, 1, 2, 3, 4),
    "mon-fri": (0, 1, 2, 3, 4),
    "mon-sat": (0, 1, 2, 3, 4, 5),
    "пн": (0,), "вт": (1,), "ср": (2,), "чт": (3,), "пт": (4,), "сб": (5,), "вс": (6,),
    "mon": (0,), "tue": (1,), "wed": (2,), "thu": (3,), "fri": (4,), "sat": (5,), "sun": (6,),
}

Interval = Tuple[datetime, datetime]


@dataclass(frozen=True)
class Slot:
    """A free start time for one staff member."""

    staff_id: UUID
    staff_name: str
    start_at: datetime  # UTC
    end_at: datetime    # UTC
    local_start: datetime

    def to_dict(self) -> dict:
        return {
            "staff_id": str(self.staff_id),
            "staff_name": self.staff_name,
            "date": self.local_start.date().isoformat(),
            "time": self.local_start.strftime("%H:%M"),
            "start_at_utc": self.start_at.isoformat(),
        }


def _parse_hhmm(value: str) -> Optional[time]:
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError):
        return None


def _parse_free_text(text: str, weekday: int) -> Optional[Tuple[time, time]]:
    parts = re.split(r"[,;]", text)
    for part in parts:
        lowered = part.lower().strip()
        applies = any(
            token in lowered and weekday in days
            for token, days in _DAY_TOKENS.items()
        )
        if applies or len(parts) == 1:
            match = _TIME_RANGE.search(part)
            if match:
                h1, m1, h2, m2 = (int(g) for g in match.groups())
                return time(h1 % 24, m1 % 60), time(h2 % 24, m2 % 60)

    match = _FROM_TO_HOURS.search(text)
    if match:
        return time(int(match.group(1)) % 24), time(int(match.group(2)) % 24)

    match = _TIME_RANGE.search(text)
    if match:
        h1, m1, h2, m2 = (int(g) for g in match.groups())
        return time(h1 % 24, m1 % 60), time(h2 % 24, m2 % 60)

    return DEFAULT_OPEN


def open_hours_for_day(working_hours, day: date) -> Optional[Tuple[time, time]]:
    """
    Local opening hours for one calendar day, or None when closed.

    working_hours may be None (09:00-18:00 daily), a dict keyed by weekday
    abbreviation, or a free-text schedule string.
    """
    weekday = day.weekday()
    if not working_hours:
        return DEFAULT_OPEN

    if isinstance(working_hours, str):
        hours = _parse_free_text(working_hours, weekday)
    else:
        entry = working_hours.get(WEEKDAY_KEYS[weekday])
        if not entry:
            return None
        start, end = _parse_hhmm(entry.get("start", "")), _parse_hhmm(entry.get("end", ""))
        if start is None or end is None:
            return None
        hours = (start, end)

    if hours is None or hours[1] <= hours[0]:
        return None
    return hours


def open_intervals_utc(
    working_hours,
    offset_minutes: int,
    date_from: date,
    date_to: date,
) -> List[Tuple[date, datetime, datetime]]:
    """(local day, open start UTC, open end UTC) for each open day in range."""
    intervals = []
    day = date_from
    while day <= date_to:
        hours = open_hours_for_day(working_hours, day)
        if hours:
            intervals.append((
                day,
                to_utc(datetime.combine(day, hours[0]), offset_minutes),
                to_utc(datetime.combine(day, hours[1]), offset_minutes),
            ))
        day += timedelta(days=1)
    return intervals


def floor_to(dt: datetime, granularity: timedelta) -> datetime:
    return EPOCH + ((dt - EPOCH) // granularity) * granularity


def ceil_to(dt: datetime, granularity: timedelta) -> datetime:
    floored = floor_to(dt, granularity)
    return floored if floored == dt else floored + granularity


def occupancy(start: datetime, end: datetime, buffer: timedelta, granularity: timedelta) -> Interval:
    """Bucket-aligned span a booking blocks, buffer included."""
    return floor_to(start, granularity), ceil_to(end + buffer, granularity)


def claim_buckets(start: datetime, end: datetime, buffer: timedelta, granularity: timedelta) -> List[datetime]:
    span_start, span_end = occupancy(start, end, buffer, granularity)
    buckets = []
    bucket = span_start
    while bucket < span_end:
        buckets.append(bucket)
        bucket += granularity
    return buckets


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def slot_is_free(
    start: datetime,
    end: datetime,
    busy: Sequence[Interval],
    time_off: Sequence[Interval],
    buffer: timedelta,
    granularity: timedelta,
) -> bool:
    """
    busy holds occupancy spans of existing bookings, time_off raw intervals.
    """
    if any(overlaps(start, end, off_start, off_end) for off_start, off_end in time_off):
        return False
    span_start, span_end = occupancy(start, end, buffer, granularity)
    return not any(overlaps(span_start, span_end, b_start, b_end) for b_start, b_end in busy)


def fits_open_hours(
    start: datetime,
    end: datetime,
    working_hours,
    offset_minutes: int,
) -> bool:
    """Whether [start, end) UTC lies inside one local day's opening hours."""
    local_day = to_local(start, offset_minutes).date()
    for _, open_start, open_end in open_intervals_utc(working_hours, offset_minutes, local_day, local_day):
        if open_start <= start and end <= open_end:
            return True
    return False


def staff_slots(
    staff_id: UUID,
    staff_name: str,
    open_start: datetime,
    open_end: datetime,
    duration: timedelta,
    step: timedelta,
    busy: Sequence[Interval],
    time_off: Sequence[Interval],
    now: datetime,
    offset_minutes: int,
    buffer: timedelta,
    granularity: timedelta,
) -> Iterator[Slot]:
    """Free slots for one staff member inside one open interval, ascending."""
    start = open_start
    while start + duration <= open_end:
        end = start + duration
        if start > now and slot_is_free(start, end, busy, time_off, buffer, granularity):
            yield Slot(
                staff_id=staff_id,
                staff_name=staff_name,
                start_at=start,
                end_at=end,
                local_start=to_local(start, offset_minutes),
            )
        start += step


def merge_by_start(per_staff: Iterable[Iterator[Slot]]) -> Iterator[Slot]:
    """
    Merge per-staff slot streams by start time. Ties go to the stream that
    came first, i.e. staff insertion order.
    """
    keyed = [_keyed(index, stream) for index, stream in enumerate(per_staff)]
    for _, _, slot in heapq.merge(*keyed, key=lambda item: (item[0], item[1])):
        yield slot


def _keyed(index: int, stream: Iterator[Slot]) -> Iterator[Tuple[datetime, int, Slot]]:
    for slot in stream:
        yield slot.start_at, index, slot
