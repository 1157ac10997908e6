from typing import Optional, TypedDict

from services.stamper_interface import Punch


class DailyPlanState(TypedDict):
    today: str                          # YYYY-MM-DD
    now: str                            # HH:MM
    is_holiday: bool                    # 土日・祝日・会社休日
    holiday_reason: Optional[str]       # 理由
    auto_enabled: bool                  # 自動打刻のON/OFF
    schedule: dict[str, str]            # {action_type: "HH:MM"}
    current_state: str                  # AttendanceState の値
    punches: list[Punch]                # 本日の実打刻
    execute: list[str]                  # タイマーで実行
    skip: list[str]                     # 実行しない
    immediate: list[str]                # 今すぐ実行
    reason: str                         # 判断理由


def initial_state(today: str, now: str, auto_enabled: bool = True) -> DailyPlanState:
    return {
        "today": today,
        "now": now,
        "is_holiday": False,
        "holiday_reason": None,
        "auto_enabled": auto_enabled,
        "schedule": {},
        "current_state": "unknown",
        "punches": [],
        "execute": [],
        "skip": [],
        "immediate": [],
        "reason": "",
    }
