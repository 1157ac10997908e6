# schedulers/scheduler.py
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from graph.state import initial_state
from services.clock import Clock, parse_time
from services.execution_log import ExecutionLog, ExecutionLogEntry
from services.schedule_store import ScheduleStore
from services.stamper_interface import (
    ACTION_LABELS,
    ACTION_ORDER,
    ActionResult,
    ActionType,
    AttendanceBackend,
    AttendanceState,
)

logger = logging.getLogger(__name__)

ROLLOVER_JOB_ID = "daily_rollover"
RETRY_JOB_ID = "retry_probe"


def action_job_id(action: ActionType) -> str:
    return f"action_{ActionType(action).value}"


@dataclass
class StartupAnalysis:
    state: str
    reason: str
    execute: list[str] = field(default_factory=list)
    skip: list[str] = field(default_factory=list)
    immediate: list[str] = field(default_factory=list)
    retrying: bool = False
    fallback_time: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class AttendanceScheduler:
    """APSchedulerによる1日の打刻管理

    日替わりジョブで当日の計画を立て、実行するアクションごとに1回限りのジョブを登録する。
    打刻が成功するたびに状態を取り直して計画し直す。
    """

    def __init__(
        self,
        config: dict,
        graph,
        backend: AttendanceBackend,
        store: ScheduleStore,
        execution_log: ExecutionLog,
        calendar_service,
        notifier,
        clock: Clock = None,
        ledger=None,
        tasks=None,
        scheduler: AsyncIOScheduler = None,
    ):
        self._config = config
        self._graph = graph
        self._backend = backend
        self._store = store
        self._log = execution_log
        self._calendar = calendar_service
        self._notifier = notifier
        self._clock = clock or Clock(config.get("timezone"))
        self._ledger = ledger
        self._tasks = tasks
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._clock.tz)
        self._analysis: Optional[StartupAnalysis] = None
        self._planning = False
        self._replan_pending = False

        rollover = parse_time(config["scheduler"]["rollover_time"])
        self._scheduler.add_job(
            self.rollover,
            trigger=CronTrigger(hour=rollover.hour, minute=rollover.minute, timezone=self._clock.tz),
            id=ROLLOVER_JOB_ID,
            replace_existing=True,
        )

    @property
    def auto_enabled(self) -> bool:
        return bool(self._config.get("auto_checkin_enabled", True))

    def set_auto_enabled(self, enabled: bool) -> None:
        self._config["auto_checkin_enabled"] = enabled
        logger.info("[Scheduler] 自動打刻を%sにしました", "ON" if enabled else "OFF")

    def start(self):
        """スケジューラ開始（イベントループ上で呼ぶ）"""
        self._scheduler.start()

    def stop(self):
        """スケジューラ停止"""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def get_jobs(self):
        return self._scheduler.get_jobs()

    def _remove_job(self, job_id: str) -> None:
        if self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)

    def _remove_action_jobs(self) -> None:
        for action in ACTION_ORDER:
            self._remove_job(action_job_id(action))

    # ------------------------------------------------------------------
    # 計画
    # ------------------------------------------------------------------

    async def rollover(self):
        """日替わり処理: 古いデータを掃除して当日の計画を立てる"""
        today = self._clock.today()
        logger.info("[Scheduler] 日替わり処理 %s", today.isoformat())
        self._store.clean_old(today, self._config["scheduler"]["keep_schedule_days"])
        if self._ledger is not None:
            self._ledger.purge_other_months(self._clock.month_str())
        if self._tasks is not None:
            self._tasks.purge_expired()
        await self.plan_today()

    async def plan_today(self, tier2: bool = False) -> StartupAnalysis:
        """当日分を計画し直す（再計画のたびに再試行ジョブは消す）

        計画中の即時実行が成功した場合は、その後の状態でもう一度計画する。
        """
        self._planning = True
        try:
            analysis = await self._plan(tier2)
            # 成功のたびに状態が進むので回数はアクション数で足りる
            for _ in ACTION_ORDER:
                if not self._replan_pending:
                    break
                self._replan_pending = False
                logger.info("[Scheduler] 即時実行後の状態で計画し直します")
                analysis = await self._plan(tier2)
            return analysis
        finally:
            self._planning = False
            self._replan_pending = False

    async def refresh_plan(self) -> Optional[StartupAnalysis]:
        """打刻後に状態を取り直して計画し直す。計画中の呼び出しは計画完了後に1回にまとめる"""
        if self._planning:
            self._replan_pending = True
            return None
        return await self.plan_today()

    async def _retry_probe(self):
        logger.info("[Scheduler] 出勤前の再確認を実行します")
        await self.plan_today(tier2=True)

    async def _plan(self, tier2: bool) -> StartupAnalysis:
        self._remove_job(RETRY_JOB_ID)
        today = self._clock.today_str()
        result = await self._graph.ainvoke(initial_state(today, self._clock.time_str(), self.auto_enabled))

        if result["is_holiday"]:
            self._remove_action_jobs()
            analysis = StartupAnalysis(state="holiday", reason=f"Holiday: {result['holiday_reason']}")
            logger.info("[Scheduler] 本日は休日のため打刻しません (%s)", result["holiday_reason"])
            self._analysis = analysis
            return analysis

        if not result["auto_enabled"]:
            self._remove_action_jobs()
            analysis = StartupAnalysis(state="disabled", reason="Auto check-in is disabled")
            logger.info("[Scheduler] 自動打刻OFFのためタイマーを設定しません")
            self._analysis = analysis
            return analysis

        analysis = StartupAnalysis(
            state=result["current_state"],
            reason=result["reason"],
            execute=list(result["execute"]),
            skip=list(result["skip"]),
            immediate=list(result["immediate"]),
        )

        if analysis.state == AttendanceState.UNKNOWN.value and not tier2:
            checkin = result["schedule"].get(ActionType.CHECKIN.value)
            if checkin:
                minutes = self._config["scheduler"]["fallback_probe_minutes_before"]
                fallback = self._clock.shift(checkin, -minutes)
                if self._clock.seconds_until(fallback) > 0:
                    self._scheduler.add_job(
                        self._retry_probe,
                        trigger=DateTrigger(run_date=self._clock.at(fallback)),
                        id=RETRY_JOB_ID,
                        replace_existing=True,
                    )
                    analysis.retrying = True
                    analysis.fallback_time = fallback
                    analysis.reason = f"{analysis.reason}; retrying at {fallback}"
                    logger.warning("[Scheduler] 状態不明のため %s に再確認します", fallback)
                else:
                    logger.warning("[Scheduler] 状態不明のまま再確認時刻を過ぎたため本日はすべてスキップ")

        self._analysis = analysis
        logger.info("[Scheduler] 計画: %s", analysis.reason)
        await self._arm(result["schedule"], analysis)
        return analysis

    async def _arm(self, schedule: dict, analysis: StartupAnalysis) -> None:
        for action in ACTION_ORDER:
            job_id = action_job_id(action)
            if action.value not in analysis.execute:
                self._remove_job(job_id)
                continue

            time_str = schedule[action.value]
            run_at = self._clock.at(time_str)
            self._remove_job(job_id)
            if run_at <= self._clock.now():
                logger.info("[Scheduler] %s (%s) は時刻を過ぎているため設定しません", ACTION_LABELS[action], time_str)
                continue
            self._scheduler.add_job(
                self.run_action,
                trigger=DateTrigger(run_date=run_at),
                args=[action.value, time_str, "scheduled"],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=300,
            )
            logger.info("[Scheduler] %s を %s に設定", ACTION_LABELS[action], time_str)

        for value in analysis.immediate:
            await self.run_action(value, self._clock.time_str(), "immediate")

    # ------------------------------------------------------------------
    # 実行
    # ------------------------------------------------------------------

    async def run_action(self, action, scheduled_time: str, trigger: str = "scheduled") -> ActionResult:
        """アクションを実行して履歴・通知を残す。ジョブから呼ばれても例外は外に出さない"""
        action = ActionType(action)
        try:
            result = await self._execute(action, trigger)
        except Exception as e:
            logger.exception("[Scheduler] %s の実行中に予期しないエラー", action.value)
            self._notifier.send_error(str(e))
            result = ActionResult(status="failure", error=str(e))

        self._log.append(
            ExecutionLogEntry(
                action_type=action.value,
                scheduled_time=scheduled_time,
                executed_at=self._clock.timestamp(),
                status=result.status,
                trigger=trigger,
                error_message=result.error,
                duration_ms=result.duration_ms,
                screenshot_before=result.screenshot_before,
                screenshot_after=result.screenshot_after,
            )
        )
        if result.success:
            self._store.mark_executed(self._clock.today_str(), action)
        self._notifier.notify_action(action, result, trigger)

        if result.success:
            try:
                await self.refresh_plan()
            except Exception as e:
                logger.exception("[Scheduler] 打刻後の再計画に失敗しました")
                self._notifier.send_error(str(e))
        return result

    async def _execute(self, action: ActionType, trigger: str) -> ActionResult:
        if trigger == "scheduled":
            # タイマー設定後に設定・休日が変わっていることがある
            if not self.auto_enabled:
                logger.info("[Scheduler] 自動打刻OFFのため %s をスキップ", ACTION_LABELS[action])
                return ActionResult(status="skipped", error="Auto check-in is disabled")
            is_holiday, reason = self._calendar.is_holiday(self._clock.today())
            if is_holiday:
                logger.info("[Scheduler] 休日 (%s) のため %s をスキップ", reason, ACTION_LABELS[action])
                return ActionResult(status="skipped", error=f"Holiday: {reason}")

        logger.info("[Scheduler] %s を実行 (%s)", ACTION_LABELS[action], trigger)
        return await self._backend.execute_action(action)

    async def trigger_manual(self, action) -> ActionResult:
        """手動実行（自動打刻OFF・休日でも実行する）"""
        return await self.run_action(action, self._clock.time_str(), "manual")

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    def get_startup_analysis(self) -> Optional[dict]:
        return self._analysis.to_dict() if self._analysis else None

    def get_today_schedule(self) -> list[dict]:
        entries = self._store.get_day(self._clock.today_str())
        schedule = []
        for action in ACTION_ORDER:
            entry = entries.get(action)
            if entry is None:
                continue
            schedule.append(
                {
                    "action_type": action.value,
                    "resolved_time": entry.resolved_time,
                    "executed": entry.executed,
                    "armed": self._scheduler.get_job(action_job_id(action)) is not None,
                }
            )
        return schedule
