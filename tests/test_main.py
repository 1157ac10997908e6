# tests/test_main.py
import copy

import pytest

from main import create_services
from schedulers.scheduler import ROLLOVER_JOB_ID
from services.config_loader import DEFAULT_CONFIG


@pytest.mark.asyncio
async def test_create_services_with_mock_backend(monkeypatch):
    """mockバックエンドでサービス一式が組み立てられること"""
    for name in ("FREEE_USERNAME", "FREEE_PASSWORD", "SLACK_BOT_TOKEN", "SLACK_NOTIFY_CHANNEL"):
        monkeypatch.delenv(name, raising=False)
    config = copy.deepcopy(DEFAULT_CONFIG)

    services = create_services(config)
    try:
        assert services.backend.name == "mock"
        assert services.guard.locked is False
        assert ROLLOVER_JOB_ID in {job.id for job in services.scheduler.get_jobs()}
        assert len(services.execution_log) == 0
    finally:
        await services.client.close()


@pytest.mark.asyncio
async def test_create_services_rejects_unknown_backend():
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["backend"] = "rpa"
    with pytest.raises(ValueError):
        create_services(config)
