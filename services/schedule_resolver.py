import logging
import random
from typing import Optional

from services.clock import minutes_to_time, to_minutes
from services.schedule_store import ScheduleStore
from services.stamper_interface import ACTION_ORDER, ActionType

logger = logging.getLogger(__name__)


def resolve_time(action_config: dict, rng: random.Random = None) -> Optional[str]:
    """アクション設定から打刻時刻を決める

    mode=fixed は fixed_time、mode=random は [window_start, window_end] から一様に1分単位で選ぶ。
    """
    if not action_config or not action_config.get("enabled", True):
        return None
    mode = action_config.get("mode", "fixed")
    if mode == "fixed":
        return action_config.get("fixed_time") or None
    if mode == "random":
        start = to_minutes(action_config["window_start"])
        end = to_minutes(action_config["window_end"])
        if end < start:
            start, end = end, start
        return minutes_to_time((rng or random).randint(start, end))
    raise ValueError(f"Unknown schedule mode: {mode}")


class ScheduleResolver:
    """当日の予定時刻を確定して ScheduleStore に保存する"""

    def __init__(
        self,
        store: ScheduleStore,
        schedule_config: dict,
        max_break_minutes: int = 60,
        rng: random.Random = None,
    ):
        self._store = store
        self._schedule_config = schedule_config
        self._max_break = max_break_minutes
        self._rng = rng or random.Random()

    def update_config(self, schedule_config: dict) -> None:
        self._schedule_config = schedule_config

    def resolve(self, day: str) -> dict[str, str]:
        """{action_type: "HH:MM"} を返す。登録済みの予定があればそれを使う"""
        schedule = {}
        for action in ACTION_ORDER:
            action_config = self._schedule_config.get(action.value)
            if not action_config or not action_config.get("enabled", True):
                continue
            existing = self._store.get(day, action)
            if existing is not None:
                # 同じ日の再計画では時刻を変えない
                schedule[action.value] = existing.resolved_time
                continue
            resolved = resolve_time(action_config, self._rng)
            if resolved:
                schedule[action.value] = resolved
                self._store.set(day, action, resolved)

        self._clamp_break(day, schedule)
        logger.info("[Schedule] %s の予定: %s", day, schedule)
        return schedule

    def _clamp_break(self, day: str, schedule: dict[str, str]) -> None:
        """休憩終了は休憩開始から max_break_minutes 以内に収める"""
        start = schedule.get(ActionType.BREAK_START.value)
        end = schedule.get(ActionType.BREAK_END.value)
        if not start or not end:
            return
        limit = to_minutes(start) + self._max_break
        if to_minutes(end) > limit:
            clamped = minutes_to_time(limit)
            logger.info("[Schedule] 休憩終了 %s を %s に調整", end, clamped)
            schedule[ActionType.BREAK_END.value] = clamped
            entry = self._store.get(day, ActionType.BREAK_END)
            if entry is not None and not entry.executed:
                entry.resolved_time = clamped
