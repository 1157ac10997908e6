import logging

from services.api_backend import LiveApiBackend
from services.attendance_browser import BrowserBackend
from services.clock import Clock
from services.dummy_stamper import MockBackend
from services.freee_client import FreeeApiClient
from services.session_guard import SessionGuard
from services.stamper_interface import AttendanceBackend

logger = logging.getLogger(__name__)

BACKENDS = ("mock", "api", "browser")


def create_backend(
    config: dict,
    clock: Clock,
    client: FreeeApiClient = None,
    guard: SessionGuard = None,
) -> AttendanceBackend:
    """設定の backend に応じて打刻バックエンドを1つ選ぶ"""
    kind = config.get("backend", "mock")
    if kind == "mock":
        backend = MockBackend(clock)
    elif kind == "api":
        if client is None:
            raise ValueError("backend=api requires a FreeeApiClient")
        backend = LiveApiBackend(client, clock)
    elif kind == "browser":
        if guard is None:
            raise ValueError("backend=browser requires a SessionGuard")
        backend = BrowserBackend(guard, clock)
    else:
        raise ValueError(f"Unknown backend: {kind}. Valid: {', '.join(BACKENDS)}")

    logger.info("[Backend] %s を使用します", backend.name)
    return backend
