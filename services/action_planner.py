"""本日の打刻計画を決める純粋関数

4つのアクション（出勤・休憩開始・休憩終了・退勤）は単一の状態遷移ではなく、
それぞれ独立に評価する。退勤後の再出勤のように「現在状態」と「本日の実打刻」が
食い違うことがあるため。評価順は ACTION_ORDER 固定。
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from services.clock import minutes_to_time, to_minutes
from services.stamper_interface import ActionType, AttendanceState, Punch

CHECKIN_GRACE_MINUTES = 5
BREAK_START_GRACE_MINUTES = 5
# 労基法34条: 6時間を超える勤務には休憩が必要（6h1m以上）
BREAK_REQUIRED_MINUTES = 361
MAX_BREAK_MINUTES = 60

CHECKIN = ActionType.CHECKIN.value
BREAK_START = ActionType.BREAK_START.value
BREAK_END = ActionType.BREAK_END.value
CHECKOUT = ActionType.CHECKOUT.value


@dataclass
class ActionPlan:
    execute: list[str] = field(default_factory=list)
    skip: list[str] = field(default_factory=list)
    immediate: list[str] = field(default_factory=list)
    reason: str = ""


def break_needed(expected_work_minutes: Optional[int]) -> bool:
    """予定勤務時間が361分以上なら休憩が必要"""
    return expected_work_minutes is not None and expected_work_minutes >= BREAK_REQUIRED_MINUTES


def _normalize_schedule(schedule: Optional[dict]) -> dict[str, int]:
    result = {}
    for key, value in (schedule or {}).items():
        if value:
            result[ActionType(key).value] = to_minutes(value)
    return result


def _normalize_punches(punches: Iterable[Union[Punch, dict]]) -> list[tuple[str, int]]:
    result = []
    for p in punches or ():
        if isinstance(p, Punch):
            kind, at = p.type, p.time
        else:
            kind, at = p["type"], p["time"]
        result.append((ActionType(kind).value, to_minutes(at)))
    result.sort(key=lambda item: item[1])
    return result


def _last(punches: list[tuple[str, int]], kind: str, since: Optional[int] = None) -> Optional[int]:
    found = None
    for p_kind, at in punches:
        if p_kind == kind and (since is None or at >= since):
            found = at
    return found


def plan_actions(
    state: Union[AttendanceState, str],
    schedule: Optional[dict],
    punches: Iterable[Union[Punch, dict]],
    now: str,
) -> ActionPlan:
    """現在状態・本日の予定・実打刻から、実行/スキップ/即時実行を決める

    Args:
        state: 現在の勤怠状態
        schedule: {action_type: "HH:MM"}（未設定のアクションはスキップ）
        punches: 本日の実打刻 [{type, time}]
        now: 現在時刻 "HH:MM"（設定タイムゾーンの Clock から渡す）
    """
    plan = ActionPlan()
    try:
        state = AttendanceState(state)
    except ValueError:
        state = AttendanceState.UNKNOWN

    if state == AttendanceState.UNKNOWN:
        plan.skip = [a.value for a in ActionType]
        plan.reason = f"Unknown state ({state.value}), skipping all for safety"
        return plan

    now_min = to_minutes(now)
    times = _normalize_schedule(schedule)
    history = _normalize_punches(punches)
    notes = []

    last_checkin = _last(history, CHECKIN)
    last_break_start = _last(history, BREAK_START, since=last_checkin)
    break_end_done = last_break_start is not None and _last(history, BREAK_END, since=last_break_start) is not None
    checkout_done = _last(history, CHECKOUT, since=last_checkin) is not None

    if state == AttendanceState.CHECKED_OUT:
        notes.append("Already checked out, nothing to do today")

    # --- checkin ---
    if last_checkin is not None or state != AttendanceState.NOT_CHECKED_IN:
        plan.skip.append(CHECKIN)
    elif CHECKIN not in times:
        plan.skip.append(CHECKIN)
        notes.append("Checkin not scheduled")
    elif now_min > times[CHECKIN] + CHECKIN_GRACE_MINUTES:
        plan.skip.append(CHECKIN)
        notes.append(
            f"Checkin window passed ({minutes_to_time(times[CHECKIN])}) - skipping today to avoid late record"
        )
    else:
        plan.execute.append(CHECKIN)

    checked_in = last_checkin is not None or state in (AttendanceState.WORKING, AttendanceState.ON_BREAK)
    will_work = CHECKIN in plan.execute or (checked_in and state != AttendanceState.CHECKED_OUT and not checkout_done)

    effective_checkin = last_checkin if last_checkin is not None else times.get(CHECKIN)
    expected_work = None
    if effective_checkin is not None and CHECKOUT in times:
        expected_work = times[CHECKOUT] - effective_checkin
    need_break = break_needed(expected_work)

    # --- break_start ---
    if state == AttendanceState.ON_BREAK or last_break_start is not None:
        plan.skip.append(BREAK_START)
    elif not will_work:
        plan.skip.append(BREAK_START)
    elif BREAK_START not in times:
        plan.skip.append(BREAK_START)
    elif not need_break:
        plan.skip.append(BREAK_START)
        if expected_work is not None:
            notes.append(f"Expected work {expected_work}min < {BREAK_REQUIRED_MINUTES}min, no break needed")
    elif now_min > times[BREAK_START] + BREAK_START_GRACE_MINUTES:
        plan.skip.append(BREAK_START)
        notes.append(f"Break window passed ({minutes_to_time(times[BREAK_START])})")
    else:
        plan.execute.append(BREAK_START)

    # --- break_end ---
    if state == AttendanceState.ON_BREAK:
        started = last_break_start if last_break_start is not None else times.get(BREAK_START)
        if started is not None and now_min - started > MAX_BREAK_MINUTES:
            plan.immediate.append(BREAK_END)
            notes.append(f"Break exceeded {MAX_BREAK_MINUTES}min ({now_min - started}min), ending immediately")
        elif BREAK_END in times:
            plan.execute.append(BREAK_END)
        else:
            plan.skip.append(BREAK_END)
    elif BREAK_START in plan.execute and BREAK_END in times:
        plan.execute.append(BREAK_END)
    else:
        plan.skip.append(BREAK_END)
        if break_end_done and state == AttendanceState.WORKING:
            notes.append("Break already taken")

    # --- checkout ---
    if state == AttendanceState.CHECKED_OUT or checkout_done:
        plan.skip.append(CHECKOUT)
    elif not (checked_in or CHECKIN in plan.execute):
        plan.skip.append(CHECKOUT)
    elif CHECKOUT not in times:
        plan.skip.append(CHECKOUT)
        notes.append("Checkout not scheduled")
    else:
        plan.execute.append(CHECKOUT)

    parts = []
    if plan.execute:
        parts.append("Scheduling " + ", ".join(plan.execute))
    parts.extend(notes)
    plan.reason = "; ".join(parts) if parts else "Nothing to do today"
    return plan
