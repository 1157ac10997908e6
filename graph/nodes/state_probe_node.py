# graph/nodes/state_probe_node.py
import logging

from graph.state import DailyPlanState

logger = logging.getLogger(__name__)


async def state_probe_node(state: DailyPlanState, probe=None, retry: bool = True) -> dict:
    """現在の勤怠状態と本日の打刻を取得するノード（取得失敗は unknown）"""
    if retry:
        current = await probe.detect_with_retry()
    else:
        current = await probe.detect()
    punches = await probe.punches()
    logger.info("[Probe] 現在状態: %s (%s) 打刻 %d 件", current.value, probe.backend_name, len(punches))
    return {"current_state": current.value, "punches": punches}
