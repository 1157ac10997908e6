# graph/nodes/resolve_schedule_node.py
from graph.state import DailyPlanState


def resolve_schedule_node(state: DailyPlanState, resolver=None) -> dict:
    """本日の予定時刻を確定するノード（自動打刻OFFでも時刻は決めておく）"""
    return {"schedule": resolver.resolve(state["today"])}
