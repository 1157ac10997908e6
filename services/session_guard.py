import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from services.errors import SessionBusy

logger = logging.getLogger(__name__)


class SessionGuard:
    """ブラウザ自動操作の単一実行ガード

    同時に保持できるのは1者のみ。後続はFIFOで待ち、解放時に先頭へ直接引き渡す。
    """

    def __init__(self, session_factory: Callable = None, max_waiters: int = 64):
        self._session_factory = session_factory
        self._max_waiters = max_waiters
        self._held = False
        self._waiters: deque = deque()

    @property
    def locked(self) -> bool:
        return self._held

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def acquire(self) -> None:
        if not self._held and not self._waiters:
            self._held = True
            return

        if len(self._waiters) >= self._max_waiters:
            raise SessionBusy(f"Automation session queue is full ({self._max_waiters} waiting)")

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # 引き渡し直後にキャンセルされた場合は次へ回す
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        if not self._held:
            raise RuntimeError("SessionGuard.release() called while not held")
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # 保持状態のまま次の待機者へ引き渡す
                fut.set_result(True)
                return
        self._held = False

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    @asynccontextmanager
    async def session(self) -> AsyncIterator:
        """ガードを取得し、初期化済みセッションを渡す。終了時は必ず後始末して解放する"""
        if self._session_factory is None:
            raise RuntimeError("SessionGuard has no session factory")
        await self.acquire()
        session = None
        try:
            session = self._session_factory()
            await session.init()
            yield session
        finally:
            if session is not None:
                try:
                    await session.cleanup()
                except Exception:
                    logger.exception("[Session] 後始末に失敗しました")
            self.release()
