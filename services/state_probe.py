import asyncio
import logging
from typing import Awaitable, Callable

from services.stamper_interface import AttendanceBackend, AttendanceState, Punch

logger = logging.getLogger(__name__)


class StateProbe:
    """設定されたバックエンドに現在状態を問い合わせる（読み取りのみ）

    失敗は例外にせず unknown として返す。
    """

    def __init__(
        self,
        backend: AttendanceBackend,
        retry_count: int = 3,
        retry_interval_seconds: float = 30,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self._backend = backend
        self._retry_count = retry_count
        self._retry_interval = retry_interval_seconds
        self._sleep = sleep

    @property
    def backend_name(self) -> str:
        return self._backend.name

    async def detect(self) -> AttendanceState:
        try:
            return AttendanceState(await self._backend.detect_state())
        except Exception as e:
            logger.error("[Probe] 状態取得に失敗 (%s): %s", self._backend.name, e)
            return AttendanceState.UNKNOWN

    async def detect_with_retry(self) -> AttendanceState:
        """unknownなら retry_interval 秒間隔で最大 retry_count 回まで取り直す"""
        state = await self.detect()
        attempt = 0
        while state == AttendanceState.UNKNOWN and attempt < self._retry_count:
            attempt += 1
            logger.info(
                "[Probe] 状態不明のため %s秒後に再試行 (%d/%d)", self._retry_interval, attempt, self._retry_count
            )
            await self._sleep(self._retry_interval)
            state = await self.detect()
        return state

    async def punches(self) -> list[Punch]:
        try:
            return list(await self._backend.today_punches())
        except Exception as e:
            logger.warning("[Probe] 本日の打刻履歴を取得できません: %s", e)
            return []
