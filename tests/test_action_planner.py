# tests/test_action_planner.py
import pytest

from services.action_planner import break_needed, plan_actions
from services.stamper_interface import ActionType, Punch

FULL_DAY = {
    "checkin": "09:00",
    "break_start": "12:00",
    "break_end": "13:00",
    "checkout": "18:00",
}


def _punch(kind: str, at: str) -> dict:
    return {"type": kind, "time": at}


# --- break_needed ---


def test_break_needed_boundary():
    """361分以上で休憩が必要になること（360分は不要）"""
    assert break_needed(361) is True
    assert break_needed(360) is False
    assert break_needed(540) is True
    assert break_needed(None) is False


# --- 基本ケース ---


def test_unknown_state_skips_everything():
    """状態不明なら安全のためすべてスキップ"""
    plan = plan_actions("unknown", FULL_DAY, [], "08:50")
    assert plan.execute == []
    assert plan.immediate == []
    assert plan.skip == ["checkin", "break_start", "break_end", "checkout"]
    assert "unknown" in plan.reason.lower()
    assert "safety" in plan.reason


def test_unrecognized_state_treated_as_unknown():
    plan = plan_actions("logged_out", FULL_DAY, [], "08:50")
    assert plan.execute == []
    assert len(plan.skip) == 4


def test_uc1_normal_morning():
    """UC1: 出勤前なら4アクションすべて実行"""
    plan = plan_actions("not_checked_in", FULL_DAY, [], "08:50")
    assert plan.execute == ["checkin", "break_start", "break_end", "checkout"]
    assert plan.skip == []
    assert plan.reason.startswith("Scheduling")


def test_uc2_early_manual_checkin():
    """UC2: 手動で早めに出勤済みなら出勤だけスキップ"""
    plan = plan_actions("working", FULL_DAY, [_punch("checkin", "08:30")], "08:35")
    assert plan.skip == ["checkin"]
    assert plan.execute == ["break_start", "break_end", "checkout"]
    assert "Scheduling" in plan.reason


def test_uc3_manual_checkout_done():
    """UC3: 退勤済みなら何もしない"""
    punches = [_punch("checkin", "09:00"), _punch("checkout", "15:00")]
    plan = plan_actions("checked_out", FULL_DAY, punches, "15:05")
    assert plan.execute == []
    assert plan.immediate == []
    assert len(plan.skip) == 4
    assert "checked out" in plan.reason


def test_uc4_late_checkin_window_passed():
    """UC4: 出勤予定から5分を過ぎたら本日は打刻しない"""
    plan = plan_actions("not_checked_in", FULL_DAY, [], "09:06")
    assert plan.execute == []
    assert "checkin" in plan.skip
    assert "checkout" in plan.skip
    assert "Checkin window passed" in plan.reason


def test_checkin_within_grace_period():
    """出勤予定+5分ちょうどまでは出勤する"""
    plan = plan_actions("not_checked_in", FULL_DAY, [], "09:05")
    assert "checkin" in plan.execute


def test_uc5_short_work_no_break():
    """UC5: 13時出勤・18時退勤（5時間）なら休憩は不要"""
    plan = plan_actions("working", FULL_DAY, [_punch("checkin", "13:00")], "13:05")
    assert plan.execute == ["checkout"]
    assert plan.skip == ["checkin", "break_start", "break_end"]
    assert "361" in plan.reason


def test_uc6_break_time_passed():
    """UC6: 休憩開始予定を過ぎていれば休憩はスキップして退勤のみ"""
    plan = plan_actions("working", FULL_DAY, [_punch("checkin", "09:00")], "12:30")
    assert plan.execute == ["checkout"]
    assert "break_start" in plan.skip
    assert "break_end" in plan.skip
    assert "Break window passed" in plan.reason


def test_uc7_on_break_within_limit():
    """UC7: 休憩中（60分以内）なら休憩終了をタイマーで実行"""
    punches = [_punch("checkin", "09:00"), _punch("break_start", "12:05")]
    plan = plan_actions("on_break", FULL_DAY, punches, "12:30")
    assert plan.execute == ["break_end", "checkout"]
    assert plan.immediate == []
    assert plan.skip == ["checkin", "break_start"]


def test_uc8_on_break_over_limit():
    """UC8: 休憩が60分を超えていたら休憩終了を即時実行"""
    punches = [_punch("checkin", "09:00"), _punch("break_start", "11:00")]
    plan = plan_actions("on_break", FULL_DAY, punches, "12:30")
    assert plan.immediate == ["break_end"]
    assert plan.execute == ["checkout"]


def test_uc9_on_break_without_punch_uses_schedule():
    """UC9: 休憩開始の打刻が取れない場合は予定時刻から経過時間を計算"""
    plan = plan_actions("on_break", FULL_DAY, [], "12:40")
    assert plan.execute == ["break_end", "checkout"]

    plan = plan_actions("on_break", FULL_DAY, [], "13:01")
    assert plan.immediate == ["break_end"]


def test_uc10_break_already_taken():
    """UC10: 休憩を取り終えていれば退勤のみ"""
    punches = [
        _punch("checkin", "08:30"),
        _punch("break_start", "12:00"),
        _punch("break_end", "12:45"),
    ]
    plan = plan_actions("working", {"checkout": "18:00"}, punches, "13:00")
    assert plan.execute == ["checkout"]
    assert plan.skip == ["checkin", "break_start", "break_end"]


def test_uc11_quick_checkin_checkout():
    """UC11: 出勤直後に退勤した日は再度打刻しない"""
    punches = [_punch("checkin", "09:00"), _punch("checkout", "09:10")]
    plan = plan_actions("checked_out", FULL_DAY, punches, "09:15")
    assert plan.execute == []
    assert "checked out" in plan.reason


def test_uc12_unknown_with_punches():
    """UC12: 打刻があっても状態不明なら何もしない"""
    plan = plan_actions("unknown", FULL_DAY, [_punch("checkin", "09:00")], "10:00")
    assert plan.execute == []
    assert plan.immediate == []


def test_uc13_short_late_work():
    """UC13: 夕方出勤の短時間勤務は退勤のみ"""
    plan = plan_actions("working", FULL_DAY, [_punch("checkin", "16:00")], "16:05")
    assert plan.execute == ["checkout"]
    assert "break_start" in plan.skip


def test_uc14_recheckin_after_checkout():
    """UC14: 退勤後に再出勤した場合は最後の出勤から判定する"""
    punches = [
        _punch("checkin", "09:00"),
        _punch("checkout", "10:00"),
        _punch("checkin", "10:30"),
    ]
    plan = plan_actions("working", FULL_DAY, punches, "10:35")
    assert plan.skip == ["checkin"]
    assert plan.execute == ["break_start", "break_end", "checkout"]


# --- 境界値 ---


def test_expected_work_361_minutes_schedules_break():
    """予定勤務361分なら休憩を入れる"""
    schedule = {"checkin": "12:00", "break_start": "12:00", "break_end": "13:00", "checkout": "18:01"}
    plan = plan_actions("working", schedule, [_punch("checkin", "12:00")], "12:00")
    assert "break_start" in plan.execute
    assert "break_end" in plan.execute


def test_expected_work_360_minutes_skips_break():
    """予定勤務360分なら休憩は入れない"""
    schedule = {"checkin": "12:00", "break_start": "12:00", "break_end": "13:00", "checkout": "18:00"}
    plan = plan_actions("working", schedule, [_punch("checkin", "12:00")], "12:00")
    assert "break_start" in plan.skip
    assert "break_end" in plan.skip
    assert plan.execute == ["checkout"]


def test_uses_scheduled_checkin_when_no_punch():
    """出勤打刻が無ければ予定の出勤時刻で勤務時間を見積もる"""
    schedule = {"checkin": "12:01", "break_start": "14:00", "break_end": "15:00", "checkout": "18:01"}
    plan = plan_actions("not_checked_in", schedule, [], "12:00")
    assert plan.execute == ["checkin", "checkout"]


# --- 予定の欠け ---


def test_empty_schedule():
    """予定が無ければ何も実行しない"""
    plan = plan_actions("not_checked_in", {}, [], "09:00")
    assert plan.execute == []
    assert len(plan.skip) == 4


def test_unscheduled_action_is_skipped():
    schedule = {"checkin": "09:00", "checkout": "18:00"}
    plan = plan_actions("not_checked_in", schedule, [], "08:50")
    assert plan.execute == ["checkin", "checkout"]
    assert plan.skip == ["break_start", "break_end"]


def test_accepts_punch_objects_and_enum_keys():
    """Punch と ActionType キーも受け付けること"""
    schedule = {ActionType.CHECKIN: "09:00", ActionType.CHECKOUT: "18:00"}
    plan = plan_actions("working", schedule, [Punch(type=ActionType.CHECKIN, time="09:00")], "09:10")
    assert plan.execute == ["checkout"]


# --- 仕様シナリオ ---


def test_working_without_punches_schedules_rest_of_day():
    """出勤済み・打刻履歴なし・9時間勤務なら休憩と退勤を実行"""
    schedule = {"checkin": "10:00", "break_start": "12:00", "break_end": "13:00", "checkout": "19:00"}
    plan = plan_actions("working", schedule, [], "10:30")
    assert "checkin" in plan.skip
    assert plan.execute == ["break_start", "break_end", "checkout"]


def test_long_break_ends_immediately():
    """12:00から休憩中で13:05なら休憩終了は即時実行側に入る"""
    schedule = {"checkin": "09:00", "break_start": "12:00", "break_end": "13:00", "checkout": "18:00"}
    punches = [_punch("checkin", "09:00"), _punch("break_start", "12:00")]
    plan = plan_actions("on_break", schedule, punches, "13:05")
    assert "break_end" in plan.immediate
    assert "break_end" not in plan.execute


def test_current_time_is_required():
    """現在時刻は呼び出し側のClockから渡す（ローカル時刻に暗黙で頼らない）"""
    with pytest.raises(TypeError):
        plan_actions("not_checked_in", FULL_DAY, [])
