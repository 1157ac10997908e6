# graph/nodes/action_plan_node.py
from graph.state import DailyPlanState
from services.action_planner import plan_actions


def action_plan_node(state: DailyPlanState, clock=None) -> dict:
    """状態・予定・実打刻から実行するアクションを決めるノード"""
    # 状態取得のリトライで時間が経っていることがあるため現在時刻を取り直す
    now = clock.time_str() if clock is not None else state["now"]
    plan = plan_actions(state["current_state"], state["schedule"], state["punches"], now)
    return {
        "now": now,
        "execute": plan.execute,
        "skip": plan.skip,
        "immediate": plan.immediate,
        "reason": plan.reason,
    }
