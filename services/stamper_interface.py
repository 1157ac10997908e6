from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AttendanceState(str, Enum):
    NOT_CHECKED_IN = "not_checked_in"
    WORKING = "working"
    ON_BREAK = "on_break"
    CHECKED_OUT = "checked_out"
    UNKNOWN = "unknown"


class ActionType(str, Enum):
    CHECKIN = "checkin"
    BREAK_START = "break_start"
    BREAK_END = "break_end"
    CHECKOUT = "checkout"


# 評価・実行順は常にこの順
ACTION_ORDER = (
    ActionType.CHECKIN,
    ActionType.BREAK_START,
    ActionType.BREAK_END,
    ActionType.CHECKOUT,
)

ACTION_LABELS = {
    ActionType.CHECKIN: "出勤",
    ActionType.BREAK_START: "休憩開始",
    ActionType.BREAK_END: "休憩終了",
    ActionType.CHECKOUT: "退勤",
}

# freee 打刻APIの打刻種別
ACTION_TO_CLOCK_TYPE = {
    ActionType.CHECKIN: "clock_in",
    ActionType.BREAK_START: "break_begin",
    ActionType.BREAK_END: "break_end",
    ActionType.CHECKOUT: "clock_out",
}
CLOCK_TYPE_TO_ACTION = {v: k for k, v in ACTION_TO_CLOCK_TYPE.items()}

_VALID_STATES = {
    ActionType.CHECKIN: {AttendanceState.NOT_CHECKED_IN},
    ActionType.BREAK_START: {AttendanceState.WORKING},
    ActionType.BREAK_END: {AttendanceState.ON_BREAK},
    ActionType.CHECKOUT: {AttendanceState.WORKING},
}

_INVALID_REASONS = {
    ActionType.CHECKIN: {
        AttendanceState.WORKING: "Already checked in",
        AttendanceState.ON_BREAK: "Already on break",
        AttendanceState.CHECKED_OUT: "Already checked out",
    },
    ActionType.BREAK_START: {
        AttendanceState.NOT_CHECKED_IN: "Not checked in",
        AttendanceState.ON_BREAK: "Already on break",
        AttendanceState.CHECKED_OUT: "Already checked out",
    },
    ActionType.BREAK_END: {
        AttendanceState.NOT_CHECKED_IN: "Not checked in",
        AttendanceState.WORKING: "Not on break",
        AttendanceState.CHECKED_OUT: "Already checked out",
    },
    ActionType.CHECKOUT: {
        AttendanceState.NOT_CHECKED_IN: "Not checked in",
        AttendanceState.ON_BREAK: "On break - end break first",
        AttendanceState.CHECKED_OUT: "Already checked out",
    },
}


def check_action_valid(action: ActionType, state: AttendanceState) -> Optional[str]:
    """現在状態でactionが実行可能ならNone、不可なら理由を返す"""
    action = ActionType(action)
    state = AttendanceState(state)
    if state in _VALID_STATES[action]:
        return None
    return _INVALID_REASONS[action].get(state, f"Invalid state {state.value} for {action.value}")


@dataclass
class Punch:
    type: ActionType
    time: str  # HH:MM


@dataclass
class ActionResult:
    status: str  # "success" / "failure" / "skipped"
    timestamp: str = ""
    error: Optional[str] = None
    duration_ms: int = 0
    screenshot_before: Optional[str] = None
    screenshot_after: Optional[str] = None
    detected_state: Optional[AttendanceState] = None

    @property
    def success(self) -> bool:
        return self.status == "success"


class AttendanceBackend(ABC):
    """打刻バックエンドの抽象インターフェース（mock / api / browser）"""

    name = "abstract"

    @abstractmethod
    async def detect_state(self) -> AttendanceState:
        """現在の勤怠状態"""
        ...

    @abstractmethod
    async def today_punches(self) -> list[Punch]:
        """本日の実打刻一覧（時刻順）"""
        ...

    @abstractmethod
    async def execute_action(self, action: ActionType) -> ActionResult:
        """打刻実行"""
        ...

    @abstractmethod
    async def close(self) -> None:
        """リソース解放"""
        ...
