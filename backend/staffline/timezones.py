"""
Fixed-offset timezone table.

Offsets are minutes east of UTC and never change with daylight saving.
Stored timestamps are naive UTC; local times are naive wall-clock values.
"""

from datetime import datetime, timedelta
from typing import Dict, List

from staffline.config import get_settings

settings = get_settings()


TIMEZONE_OFFSETS: Dict[str, int] = {
    # Central Asia and Caucasus
    "Asia/Tashkent": 300,
    "Asia/Almaty": 300,
    "Asia/Bishkek": 360,
    "Asia/Dushanbe": 300,
    "Asia/Ashgabat": 300,
    "Asia/Baku": 240,
    "Asia/Yerevan": 240,
    "Asia/Tbilisi": 240,
    # Russia
    "Europe/Kaliningrad": 120,
    "Europe/Moscow": 180,
    "Europe/Samara": 240,
    "Asia/Yekaterinburg": 300,
    "Asia/Omsk": 360,
    "Asia/Novosibirsk": 420,
    "Asia/Krasnoyarsk": 420,
    "Asia/Irkutsk": 480,
    "Asia/Yakutsk": 540,
    "Asia/Vladivostok": 600,
    "Asia/Kamchatka": 720,
    # East Asia
    "Asia/Seoul": 540,
    "Asia/Tokyo": 540,
    "Asia/Shanghai": 480,
    # Middle East
    "Asia/Dubai": 240,
    "Asia/Riyadh": 180,
    "Asia/Istanbul": 180,
    # Europe
    "Europe/London": 0,
    "Europe/Berlin": 60,
    "Europe/Paris": 60,
    "Europe/Kiev": 120,
    # Americas
    "America/New_York": -300,
    "America/Chicago": -360,
    "America/Denver": -420,
    "America/Los_Angeles": -480,
}


def get_offset_minutes(timezone_id: str) -> int:
    """Offset for a timezone id; unknown ids use the default timezone."""
    if timezone_id in TIMEZONE_OFFSETS:
        return TIMEZONE_OFFSETS[timezone_id]
    return TIMEZONE_OFFSETS.get(settings.DEFAULT_TIMEZONE, 0)


def to_local(utc_dt: datetime, offset_minutes: int) -> datetime:
    """Convert a naive UTC timestamp to business-local wall-clock time."""
    return utc_dt + timedelta(minutes=offset_minutes)


def to_utc(local_dt: datetime, offset_minutes: int) -> datetime:
    """Convert business-local wall-clock time to a naive UTC timestamp."""
    return local_dt - timedelta(minutes=offset_minutes)


def format_offset(offset_minutes: int) -> str:
    """Format an offset as UTC+05:00 / UTC-04:30."""
    sign = "+" if offset_minutes >= 0 else "-"
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"UTC{sign}{hours:02d}:{minutes:02d}"


def list_timezones() -> List[dict]:
    """Timezone options sorted by offset, for tenant settings forms."""
    options = []
    for timezone_id, offset in TIMEZONE_OFFSETS.items():
        city = timezone_id.split("/")[-1].replace("_", " ")
        options.append({
            "id": timezone_id,
            "offset_minutes": offset,
            "label": f"({format_offset(offset)}) {city}",
        })
    options.sort(key=lambda option: (option["offset_minutes"], option["label"]))
    return options
