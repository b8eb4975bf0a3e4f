from datetime import datetime

from staffline.timezones import format_offset, get_offset_minutes, list_timezones, to_local, to_utc


def test_known_and_unknown_offsets():
    assert get_offset_minutes("Asia/Tashkent") == 300
    assert get_offset_minutes("America/New_York") == -300
    # Unknown ids use the default timezone (Asia/Tashkent)
    assert get_offset_minutes("Mars/Olympus_Mons") == 300


def test_local_and_utc_are_inverse():
    utc = datetime(2025, 3, 10, 22, 30)
    local = to_local(utc, 300)
    assert local == datetime(2025, 3, 11, 3, 30)
    assert to_utc(local, 300) == utc


def test_format_offset():
    assert format_offset(300) == "UTC+05:00"
    assert format_offset(0) == "UTC+00:00"
    assert format_offset(-270) == "UTC-04:30"


def test_list_timezones_sorted_by_offset():
    options = list_timezones()
    offsets = [option["offset_minutes"] for option in options]
    assert offsets == sorted(offsets)
    tashkent = next(option for option in options if option["id"] == "Asia/Tashkent")
    assert tashkent["label"] == "(UTC+05:00) Tashkent"
    new_york = next(option for option in options if option["id"] == "America/New_York")
    assert new_york["label"] == "(UTC-05:00) New York"
