import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Optional

from services.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class AsyncTask:
    id: str
    created_at: datetime
    status: str = "running"  # running / completed / failed
    results: Any = None
    error: Optional[str] = None


class TaskRegistry:
    """投げっぱなしのバッチ処理をIDで問い合わせられるようにする"""

    def __init__(self, ttl_minutes: int = 30, clock: Clock = None):
        self._ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock or Clock()
        self._tasks: dict[str, AsyncTask] = {}
        self._running: dict[str, asyncio.Task] = {}

    def dispatch(self, work: Awaitable) -> str:
        """コルーチンをバックグラウンドで実行し、すぐにタスクIDを返す"""
        self.purge_expired()
        task_id = uuid.uuid4().hex[:12]
        self._tasks[task_id] = AsyncTask(id=task_id, created_at=self._clock.now())
        self._running[task_id] = asyncio.ensure_future(self._run(task_id, work))
        return task_id

    async def _run(self, task_id: str, work: Awaitable) -> None:
        record = self._tasks[task_id]
        try:
            record.results = await work
            record.status = "completed"
        except Exception as e:
            logger.exception("[Task] %s が失敗しました", task_id)
            record.status = "failed"
            record.error = str(e)
        finally:
            self._running.pop(task_id, None)

    async def wait(self, task_id: str) -> Optional[AsyncTask]:
        running = self._running.get(task_id)
        if running is not None:
            await running
        return self._tasks.get(task_id)

    def get(self, task_id: str) -> Optional[AsyncTask]:
        self.purge_expired()
        return self._tasks.get(task_id)

    def purge_expired(self) -> int:
        """TTLを過ぎた完了・失敗タスクを削除する（実行中は残す）"""
        cutoff = self._clock.now() - self._ttl
        expired = [
            task_id
            for task_id, task in self._tasks.items()
            if task.created_at < cutoff and task_id not in self._running
        ]
        for task_id in expired:
            del self._tasks[task_id]
        return len(expired)
