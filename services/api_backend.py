import logging

from services.clock import Clock
from services.errors import AttendanceError
from services.freee_client import FreeeApiClient
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


class LiveApiBackend(AttendanceBackend):
    """freee APIで状態取得・打刻する（ブラウザもミューテックスも不要）"""

    name = "api"

    def __init__(self, client: FreeeApiClient, clock: Clock = None):
        self._client = client
        self._clock = clock or Clock()

    async def detect_state(self) -> AttendanceState:
        return await self._client.detect_state()

    async def today_punches(self) -> list[Punch]:
        return await self._client.punches_for(self._clock.today_str())

    async def execute_action(self, action: ActionType) -> ActionResult:
        action = ActionType(action)
        started = self._clock.now()

        if not self._client.is_configured():
            return ActionResult(status="failure", error="freee API is not authorized. Configure OAuth tokens first.")

        try:
            # 事前に状態確認
            state = await self._client.detect_state()
            reason = check_action_valid(action, state)
            if reason:
                logger.info("[API] %sをスキップ: %s", ACTION_LABELS[action], reason)
                return ActionResult(
                    status="skipped",
                    error=reason,
                    duration_ms=self._clock.elapsed_ms(started),
                    detected_state=state,
                )

            await self._client.clock_action(action, self._clock.today_str())
            timestamp = self._clock.time_str()

            try:
                post_state = await self._client.detect_state()
            except AttendanceError:
                post_state = AttendanceState.UNKNOWN

            duration = self._clock.elapsed_ms(started)
            logger.info("[API] %s完了 (%dms)", ACTION_LABELS[action], duration)
            return ActionResult(
                status="success", timestamp=timestamp, duration_ms=duration, detected_state=post_state
            )
        except AttendanceError as e:
            logger.error("[API] %s失敗: %s", action.value, e)
            return ActionResult(status="failure", error=str(e), duration_ms=self._clock.elapsed_ms(started))

    async def close(self) -> None:
        await self._client.close()
