from unittest.mock import MagicMock

import pytest

from services.api_backend import LiveApiBackend
from services.attendance_browser import BrowserBackend
from services.backend_factory import create_backend
from services.clock import Clock
from services.dummy_stamper import MockBackend
from services.session_guard import SessionGuard


def test_create_mock_backend():
    assert isinstance(create_backend({"backend": "mock"}, Clock()), MockBackend)


def test_default_is_mock():
    assert create_backend({}, Clock()).name == "mock"


def test_create_api_backend():
    backend = create_backend({"backend": "api"}, Clock(), client=MagicMock())
    assert isinstance(backend, LiveApiBackend)


def test_create_browser_backend():
    backend = create_backend({"backend": "browser"}, Clock(), guard=SessionGuard())
    assert isinstance(backend, BrowserBackend)


def test_missing_dependencies():
    with pytest.raises(ValueError):
        create_backend({"backend": "api"}, Clock())
    with pytest.raises(ValueError):
        create_backend({"backend": "browser"}, Clock())


def test_unknown_backend():
    with pytest.raises(ValueError) as exc_info:
        create_backend({"backend": "rpa"}, Clock())
    assert "rpa" in str(exc_info.value)
