# tests/test_calendar_check.py
from datetime import date

from services.holiday_calendar import LocalCalendarService


def test_local_calendar_holiday():
    """jpholidayで祝日判定できること"""
    service = LocalCalendarService()
    # 2026-01-01は元日
    is_holiday, reason = service.is_holiday(date(2026, 1, 1))
    assert is_holiday is True
    assert "元日" in reason


def test_local_calendar_workday():
    """平日が祝日でないこと"""
    service = LocalCalendarService()
    # 2026-02-24は火曜日（平日・祝日でない）
    is_holiday, reason = service.is_holiday(date(2026, 2, 24))
    assert is_holiday is False
    assert reason == ""


def test_local_calendar_weekend():
    """土日が休日判定されること"""
    service = LocalCalendarService()
    # 2026-02-21は土曜日
    assert service.is_holiday(date(2026, 2, 21)) == (True, "土曜日")
    assert service.is_holiday(date(2026, 2, 22)) == (True, "日曜日")


def test_custom_holidays_from_config():
    """設定の会社休日が休日判定されること"""
    service = LocalCalendarService(
        custom_holidays=["2026-02-25", {"date": "2026-02-26", "name": "創立記念日"}]
    )
    assert service.is_holiday(date(2026, 2, 25)) == (True, "会社休日")
    assert service.is_holiday(date(2026, 2, 26)) == (True, "創立記念日")
    assert service.is_holiday(date(2026, 2, 27)) == (False, "")


def test_add_custom_holiday_clears_cache():
    service = LocalCalendarService()
    d = date(2026, 2, 25)
    assert service.is_holiday(d)[0] is False
    service.add_custom_holiday({"date": d, "name": "夏季休暇"})
    assert service.is_holiday(d) == (True, "夏季休暇")


def test_cache_works():
    """同一日の判定結果がキャッシュされること"""
    service = LocalCalendarService()
    d = date(2026, 2, 22)
    result1 = service.is_holiday(d)
    result2 = service.is_holiday(d)
    assert result1 == result2
