from datetime import date, datetime, timezone

from services.clock import (
    Clock,
    extract_hour_minute,
    minutes_to_time,
    to_freee_datetime,
    to_minutes,
    to_time_only,
)


def test_to_minutes_round_trip():
    assert to_minutes("09:05") == 545
    assert minutes_to_time(545) == "09:05"


def test_to_freee_datetime():
    assert to_freee_datetime("2026-02-03T10:00:00+09:00") == "2026-02-03 10:00:00"
    assert to_freee_datetime("2026-02-03T10:00") == "2026-02-03 10:00:00"
    assert to_freee_datetime("10:00", "2026-02-03") == "2026-02-03 10:00:00"
    assert to_freee_datetime("2026-02-03 10:00:00") == "2026-02-03 10:00:00"
    assert to_freee_datetime(None) is None


def test_to_time_only():
    assert to_time_only("2026-02-03T10:05:00+09:00") == "10:05"
    assert to_time_only("2026-02-03 18:30:00") == "18:30"
    assert to_time_only("09:00:00") == "09:00"
    assert to_time_only("") is None


def test_extract_hour_minute():
    assert extract_hour_minute("2026-02-03T09:05:00+09:00") == (9, 5)
    assert extract_hour_minute("garbage") is None
    assert extract_hour_minute(None) is None


def test_clock_uses_configured_timezone():
    """UTCの時刻を渡しても設定タイムゾーンで扱うこと"""
    clock = Clock("Asia/Tokyo", now_func=lambda: datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc))
    assert clock.today() == date(2026, 3, 2)
    assert clock.time_str() == "08:30"
    assert clock.month_str() == "2026-03"


def test_clock_at_and_seconds_until():
    clock = Clock(now_func=lambda: datetime(2026, 3, 2, 8, 0))
    assert clock.at("09:00").hour == 9
    assert clock.at("09:00").tzinfo is clock.tz
    assert clock.seconds_until("09:00") == 3600
    assert clock.seconds_until("07:00") < 0


def test_clock_shift_clamps():
    clock = Clock()
    assert clock.shift("09:00", -15) == "08:45"
    assert clock.shift("00:10", -15) == "00:00"
    assert clock.shift("23:50", 30) == "23:59"
