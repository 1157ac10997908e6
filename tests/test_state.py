from graph.state import DailyPlanState, initial_state
from services.stamper_interface import ActionType, Punch


def test_initial_state():
    """初期Stateは状態不明・計画なしで生成されること"""
    state = initial_state("2026-03-02", "08:00")
    assert state["today"] == "2026-03-02"
    assert state["now"] == "08:00"
    assert state["is_holiday"] is False
    assert state["auto_enabled"] is True
    assert state["current_state"] == "unknown"
    assert state["schedule"] == {}
    assert state["execute"] == []
    assert state["skip"] == []
    assert state["immediate"] == []


def test_initial_state_keys_match_typed_dict():
    state = initial_state("2026-03-02", "08:00", auto_enabled=False)
    assert set(state) == set(DailyPlanState.__annotations__)
    assert state["auto_enabled"] is False


def test_state_with_punches():
    """打刻付きのStateが正しく動作すること"""
    state: DailyPlanState = initial_state("2026-03-02", "09:10")
    state["current_state"] = "working"
    state["punches"] = [Punch(type=ActionType.CHECKIN, time="09:00")]
    assert state["punches"][0].time == "09:00"
    assert len(state["punches"]) == 1
