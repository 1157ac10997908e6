# tests/test_calendar_check_node.py
from datetime import date
from unittest.mock import MagicMock

from graph.nodes.calendar_check_node import calendar_check_node
from graph.state import initial_state


def _make_state(**overrides):
    base = initial_state("2026-02-11", "08:00")
    base.update(overrides)
    return base


def test_calendar_check_holiday():
    """祝日の場合is_holiday=Trueになること"""
    mock_cal = MagicMock()
    mock_cal.is_holiday.return_value = (True, "建国記念の日")

    state = _make_state()
    result = calendar_check_node(state, calendar_service=mock_cal)
    assert result["is_holiday"] is True
    assert result["holiday_reason"] == "建国記念の日"
    mock_cal.is_holiday.assert_called_once_with(date(2026, 2, 11))


def test_calendar_check_workday():
    """平日の場合is_holiday=Falseになること"""
    mock_cal = MagicMock()
    mock_cal.is_holiday.return_value = (False, "")

    state = _make_state()
    result = calendar_check_node(state, calendar_service=mock_cal)
    assert result["is_holiday"] is False
    assert result["holiday_reason"] is None
