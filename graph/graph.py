# graph/graph.py
from langgraph.graph import StateGraph, END
from graph.state import DailyPlanState


def route_after_calendar_check(state: DailyPlanState) -> str:
    if state["is_holiday"]:
        return "end"
    return "resolve_schedule"


def route_after_resolve_schedule(state: DailyPlanState) -> str:
    if not state["auto_enabled"]:
        return "end"
    return "state_probe"


def build_graph(
    calendar_service=None,
    resolver=None,
    probe=None,
    clock=None,
    retry: bool = True,
):
    """本日の打刻計画を立てるLangGraphのグラフを構築して返す

    calendar_check -> resolve_schedule -> state_probe -> action_plan

    各ノード関数はサービス依存を持つため、functools.partialでラップして
    LangGraphが期待する (state) -> dict シグネチャに合わせる。
    state_probe は非同期ノードなので ainvoke() で実行する。
    """
    from functools import partial
    from graph.nodes.calendar_check_node import calendar_check_node
    from graph.nodes.resolve_schedule_node import resolve_schedule_node
    from graph.nodes.state_probe_node import state_probe_node
    from graph.nodes.action_plan_node import action_plan_node

    calendar_check_wrapped = partial(calendar_check_node, calendar_service=calendar_service)
    resolve_schedule_wrapped = partial(resolve_schedule_node, resolver=resolver)
    state_probe_wrapped = partial(state_probe_node, probe=probe, retry=retry)
    action_plan_wrapped = partial(action_plan_node, clock=clock)

    workflow = StateGraph(DailyPlanState)

    workflow.add_node("calendar_check", calendar_check_wrapped)
    workflow.add_node("resolve_schedule", resolve_schedule_wrapped)
    workflow.add_node("state_probe", state_probe_wrapped)
    workflow.add_node("action_plan", action_plan_wrapped)

    workflow.set_entry_point("calendar_check")

    workflow.add_conditional_edges(
        "calendar_check",
        route_after_calendar_check,
        {"resolve_schedule": "resolve_schedule", "end": END},
    )
    workflow.add_conditional_edges(
        "resolve_schedule",
        route_after_resolve_schedule,
        {"state_probe": "state_probe", "end": END},
    )
    workflow.add_edge("state_probe", "action_plan")
    workflow.add_edge("action_plan", END)

    return workflow.compile()
