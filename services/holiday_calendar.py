from datetime import date
from typing import Iterable, Union

import jpholiday


class LocalCalendarService:
    """土日・祝日(jpholiday)・独自休日による休日判定サービス"""

    def __init__(self, custom_holidays: Iterable[Union[str, dict]] = None):
        self._custom: dict[date, str] = {}
        self._cache: dict[date, tuple[bool, str]] = {}
        for item in custom_holidays or []:
            self.add_custom_holiday(item)

    def add_custom_holiday(self, item: Union[str, dict, date]) -> None:
        """会社独自の休日を登録する（"YYYY-MM-DD" または {date, name}）"""
        if isinstance(item, dict):
            day, name = item["date"], item.get("name") or "会社休日"
        else:
            day, name = item, "会社休日"
        if isinstance(day, str):
            day = date.fromisoformat(day)
        self._custom[day] = name
        self._cache.pop(day, None)

    def is_holiday(self, target_date: date = None) -> tuple[bool, str]:
        """指定日が休日かどうかを判定する"""
        if target_date is None:
            target_date = date.today()

        if target_date in self._cache:
            return self._cache[target_date]

        # 土日チェック
        if target_date.weekday() >= 5:
            day_name = "土曜日" if target_date.weekday() == 5 else "日曜日"
            result = (True, day_name)
            self._cache[target_date] = result
            return result

        # 祝日チェック
        holiday_name = jpholiday.is_holiday_name(target_date)
        if holiday_name:
            result = (True, holiday_name)
            self._cache[target_date] = result
            return result

        if target_date in self._custom:
            result = (True, self._custom[target_date])
            self._cache[target_date] = result
            return result

        result = (False, "")
        self._cache[target_date] = result
        return result
