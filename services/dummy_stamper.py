import logging

from services.clock import Clock
from services.stamper_interface import (
    ACTION_LABELS,
    ActionResult,
    ActionType,
    AttendanceBackend,
    AttendanceState,
    Punch,
    check_action_valid,
)

logger = logging.getLogger(__name__)

TRANSITIONS = {
    ActionType.CHECKIN: AttendanceState.WORKING,
    ActionType.BREAK_START: AttendanceState.ON_BREAK,
    ActionType.BREAK_END: AttendanceState.WORKING,
    ActionType.CHECKOUT: AttendanceState.CHECKED_OUT,
}


class MockBackend(AttendanceBackend):
    """オフライン・デモ用の模擬打刻。日付が変わると未出勤に戻る"""

    name = "mock"

    def __init__(self, clock: Clock = None):
        self._clock = clock or Clock()
        self._state = AttendanceState.NOT_CHECKED_IN
        self._state_date = ""
        self._punches: list[Punch] = []

    def _reset_if_new_day(self):
        today = self._clock.today_str()
        if self._state_date != today:
            self._state = AttendanceState.NOT_CHECKED_IN
            self._state_date = today
            self._punches = []

    async def detect_state(self) -> AttendanceState:
        self._reset_if_new_day()
        return self._state

    async def today_punches(self) -> list[Punch]:
        self._reset_if_new_day()
        return list(self._punches)

    async def execute_action(self, action: ActionType) -> ActionResult:
        action = ActionType(action)
        self._reset_if_new_day()
        timestamp = self._clock.time_str()

        reason = check_action_valid(action, self._state)
        if reason:
            logger.info("[MOCK] %sをスキップ: %s", ACTION_LABELS[action], reason)
            return ActionResult(
                status="skipped", timestamp=timestamp, error=reason, detected_state=self._state
            )

        self._state = TRANSITIONS[action]
        self._punches.append(Punch(type=action, time=timestamp))
        logger.info("[MOCK] %s（シミュレーション）: %s -> %s", ACTION_LABELS[action], timestamp, self._state.value)
        return ActionResult(status="success", timestamp=timestamp, detected_state=self._state)

    async def close(self) -> None:
        pass
