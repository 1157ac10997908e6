import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from services.stamper_interface import ActionType

logger = logging.getLogger(__name__)


@dataclass
class ScheduleEntry:
    date: str  # YYYY-MM-DD
    action_type: ActionType
    resolved_time: str  # HH:MM
    executed: bool = False


class ScheduleStore:
    """日付×アクションごとに1件の予定時刻を保持する"""

    def __init__(self):
        self._entries: dict[tuple[str, ActionType], ScheduleEntry] = {}

    def get(self, day: str, action: ActionType) -> Optional[ScheduleEntry]:
        return self._entries.get((day, ActionType(action)))

    def get_day(self, day: str) -> dict[ActionType, ScheduleEntry]:
        return {action: entry for (d, action), entry in self._entries.items() if d == day}

    def set(self, day: str, action: ActionType, resolved_time: str) -> ScheduleEntry:
        """予定時刻を登録（既存は置き換え、未実行に戻す）"""
        action = ActionType(action)
        entry = ScheduleEntry(date=day, action_type=action, resolved_time=resolved_time)
        self._entries[(day, action)] = entry
        return entry

    def mark_executed(self, day: str, action: ActionType) -> None:
        entry = self.get(day, action)
        if entry is not None:
            entry.executed = True

    def clean_old(self, today: date, keep_days: int = 30) -> int:
        cutoff = (today - timedelta(days=keep_days)).isoformat()
        stale = [key for key in self._entries if key[0] < cutoff]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.info("[Schedule] %s より前の予定を %d 件削除", cutoff, len(stale))
        return len(stale)
