"""自動打刻エージェント - エントリーポイント"""
import asyncio
import logging
import logging.config
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from graph.graph import build_graph
from schedulers.scheduler import AttendanceScheduler
from services.attendance_browser import AutomationSession, BrowserCredentials
from services.backend_factory import create_backend
from services.clock import Clock
from services.config_loader import load_config
from services.execution_log import ExecutionLog
from services.freee_client import FreeeApiClient, MemoryTokenStore
from services.holiday_calendar import LocalCalendarService
from services.schedule_resolver import ScheduleResolver
from services.schedule_store import ScheduleStore
from services.session_guard import SessionGuard
from services.slack_client import create_notifier
from services.stamper_interface import AttendanceBackend
from services.state_probe import StateProbe
from services.strategy_ledger import StrategyLedger
from services.task_registry import TaskRegistry
from services.write_pipeline import WritePipeline

logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """コンソール出力と（設定時は）サイズローテーションのファイル出力"""
    log_config = config["logging"]
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        },
    }
    if log_config.get("file"):
        Path(log_config["file"]).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": log_config["file"],
            "maxBytes": log_config["max_bytes"],
            "backupCount": log_config["backup_count"],
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
            },
            "handlers": handlers,
            "root": {"level": log_config.get("level", "INFO"), "handlers": list(handlers)},
            "loggers": {
                "apscheduler": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )


@dataclass
class Services:
    clock: Clock
    client: FreeeApiClient
    guard: SessionGuard
    backend: AttendanceBackend
    ledger: StrategyLedger
    tasks: TaskRegistry
    execution_log: ExecutionLog
    pipeline: WritePipeline
    scheduler: AttendanceScheduler


def create_services(config: dict) -> Services:
    """設定に基づいてサービスインスタンスを生成"""
    load_dotenv()

    clock = Clock(config["timezone"])

    api_config = config["api"]
    client = FreeeApiClient(
        MemoryTokenStore.from_env(),
        api_base=api_config["base_url"],
        token_url=api_config["token_url"],
        timeout=api_config["timeout_seconds"],
    )

    # ブラウザ操作は常にこのガード経由で1つずつ
    credentials = BrowserCredentials.from_env()
    guard = SessionGuard(
        session_factory=lambda: AutomationSession(credentials, config, clock),
        max_waiters=config["browser"]["max_waiters"],
    )

    backend = create_backend(config, clock, client=client, guard=guard)

    # 休日カレンダー
    calendar_service = LocalCalendarService(custom_holidays=config["calendar"].get("custom_holidays"))

    # Slack通知
    notifier = create_notifier(
        config,
        token=os.getenv("SLACK_BOT_TOKEN", ""),
        channel=os.getenv("SLACK_NOTIFY_CHANNEL", ""),
    )

    execution_log = ExecutionLog(config["logging"].get("execution_log") or None)
    ledger = StrategyLedger(clock)
    tasks = TaskRegistry(config["tasks"]["ttl_minutes"], clock)
    store = ScheduleStore()

    scheduler_config = config["scheduler"]
    resolver = ScheduleResolver(store, config["schedule"], scheduler_config["max_break_minutes"])
    probe = StateProbe(
        backend,
        retry_count=scheduler_config["probe_retry_count"],
        retry_interval_seconds=scheduler_config["probe_retry_interval_seconds"],
    )
    graph = build_graph(calendar_service=calendar_service, resolver=resolver, probe=probe, clock=clock)

    pipeline = WritePipeline(
        client,
        ledger,
        guard,
        execution_log,
        credentials=credentials,
        clock=clock,
        settings=config["pipeline"],
        tasks=tasks,
        notifier=notifier,
    )
    scheduler = AttendanceScheduler(
        config,
        graph,
        backend,
        store,
        execution_log,
        calendar_service,
        notifier,
        clock=clock,
        ledger=ledger,
        tasks=tasks,
    )
    return Services(
        clock=clock,
        client=client,
        guard=guard,
        backend=backend,
        ledger=ledger,
        tasks=tasks,
        execution_log=execution_log,
        pipeline=pipeline,
        scheduler=scheduler,
    )


async def run(config: dict) -> None:
    services = create_services(config)
    stop = asyncio.Event()

    # シグナルハンドリング
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    services.scheduler.start()
    try:
        analysis = await services.scheduler.plan_today()
        logger.info("[打刻エージェント] 起動時の判定: %s (%s)", analysis.state, analysis.reason)
        logger.info("[打刻エージェント] Ctrl+Cで停止します")
        await stop.wait()
    finally:
        logger.info("[打刻エージェント] 停止中...")
        services.scheduler.stop()
        await services.backend.close()
        if services.backend.name != "api":
            await services.client.close()
        logger.info("[打刻エージェント] 停止しました")


def main():
    """メイン起動処理"""
    config = load_config("config.yaml")
    setup_logging(config)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
