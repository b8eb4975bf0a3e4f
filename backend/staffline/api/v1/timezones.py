"""Supported business timezones."""

from fastapi import APIRouter

from staffline.timezones import list_timezones

router = APIRouter()


@router.get("")
async def get_timezones():
    """Timezones a business can choose, ordered by UTC offset."""
    return {"timezones": list_timezones()}
