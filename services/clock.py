import re
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Tokyo"


def to_minutes(time_str: str) -> int:
    """HH:MM形式の文字列を0時からの分数に変換"""
    h, m = map(int, time_str.split(":")[:2])
    return h * 60 + m


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(time_str: str) -> time:
    """HH:MM形式の文字列をtimeオブジェクトに変換"""
    h, m = map(int, time_str.split(":")[:2])
    return time(h, m)


_FREEE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}")
_ISO_FORMAT = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}(?::\d{2})?)")
_TIME_ONLY = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")
_EMBEDDED_TIME = re.compile(r"[T ](\d{2}):(\d{2})")


def to_freee_datetime(value: Optional[str], date_prefix: Optional[str] = None) -> Optional[str]:
    """ISO 8601 / HH:MM を freee API 形式 "YYYY-MM-DD HH:MM:SS" に変換する

    "2026-02-03T10:00:00+09:00" -> "2026-02-03 10:00:00"
    "10:00" (date_prefix="2026-02-03") -> "2026-02-03 10:00:00"
    """
    if not value:
        return None
    if _FREEE_FORMAT.match(value):
        return value
    match = _ISO_FORMAT.match(value)
    if match:
        hhmmss = match.group(2)
        if len(hhmmss) == 5:
            hhmmss += ":00"
        return f"{match.group(1)} {hhmmss}"
    if date_prefix and _TIME_ONLY.match(value):
        hhmmss = value if len(value) == 8 else f"{value}:00"
        return f"{date_prefix} {hhmmss}"
    return value


def to_time_only(value: Optional[str]) -> Optional[str]:
    """任意の日時表現から "HH:MM" 部分だけを取り出す（承認APIは時刻のみ受け付ける）"""
    if not value:
        return None
    if _TIME_ONLY.match(value):
        return value[:5]
    match = _EMBEDDED_TIME.search(value)
    if match:
        return f"{match.group(1)}:{match.group(2)}"
    return value


def extract_hour_minute(value: Optional[str]) -> Optional[tuple[int, int]]:
    """フォーム入力用に (時, 分) を取り出す。取れなければNone"""
    hhmm = to_time_only(value)
    if not hhmm or not _TIME_ONLY.match(hhmm):
        return None
    h, m = map(int, hhmm.split(":")[:2])
    return h, m


class Clock:
    """設定タイムゾーンでの現在時刻を提供する

    スケジュール計算はすべてこのクラス経由で行う。テストでは now_func を差し替える。
    """

    def __init__(self, timezone: str = DEFAULT_TIMEZONE, now_func: Callable[[], datetime] = None):
        self._tz = ZoneInfo(timezone or DEFAULT_TIMEZONE)
        self._now_func = now_func

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        if self._now_func is not None:
            value = self._now_func()
            if value.tzinfo is None:
                return value.replace(tzinfo=self._tz)
            return value.astimezone(self._tz)
        return datetime.now(self._tz)

    def today(self) -> date:
        return self.now().date()

    def today_str(self) -> str:
        return self.today().isoformat()

    def month_str(self) -> str:
        return self.now().strftime("%Y-%m")

    def time_str(self) -> str:
        return self.now().strftime("%H:%M")

    def at(self, time_str: str, day: Optional[date] = None) -> datetime:
        """指定日（省略時は今日）のHH:MMをタイムゾーン付きdatetimeで返す"""
        target_day = day or self.today()
        return datetime.combine(target_day, parse_time(time_str), tzinfo=self._tz)

    def seconds_until(self, time_str: str) -> float:
        """今日のHH:MMまでの秒数。過ぎていれば負値"""
        return (self.at(time_str) - self.now()).total_seconds()

    def shift(self, time_str: str, minutes: int) -> str:
        """HH:MMをminutes分ずらす（0:00〜23:59に丸める）"""
        total = max(0, min(to_minutes(time_str) + minutes, 23 * 60 + 59))
        return minutes_to_time(total)

    def timestamp(self) -> str:
        return self.now().isoformat(timespec="seconds")

    def elapsed_ms(self, started: datetime) -> int:
        return int((self.now() - started) / timedelta(milliseconds=1))
