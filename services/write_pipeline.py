"""勤怠修正・休暇申請の書き込みパイプライン

会社ごとに使えるAPIが違うため、安い順に試して落ちたら次へ進む:

    1. 直接書き込み    PUT  /employees/{id}/work_records/{date}
    2. 承認申請        POST /approval_requests/work_times
    3. 打刻API         POST /employees/{id}/time_clocks（出勤→休憩開始→休憩終了→退勤）
    4. Web画面         Playwright（ログイン情報がある場合のみ）

会社単位の制限（直接書き込み無効・部門/役職指定の承認経路）は1件目で学習し、
同じバッチの残りでは試さない。結果は (月, 操作種別) ごとに StrategyLedger に残す。
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from services.attendance_browser import BrowserCredentials, CorrectionTimes
from services.clock import Clock, extract_hour_minute, to_freee_datetime, to_time_only
from services.errors import (
    ApiError,
    AttendanceError,
    AuthExpired,
    CredentialsNotConfigured,
    LoginFailed,
    PermissionDenied,
    RateLimited,
    RouteUnsupported,
    TokenError,
)
from services.execution_log import ExecutionLog, ExecutionLogEntry
from services.freee_client import FreeeApiClient
from services.session_guard import SessionGuard
from services.strategy_ledger import WORK_TIME, StrategyCacheEntry, StrategyLedger, cheapest_available
from services.task_registry import TaskRegistry

logger = logging.getLogger(__name__)

# 直接書き込みが会社設定で無効化されているときのエラー文言
DIRECT_DISABLED_MARKERS = ("勤怠修正", "無効")
# 承認経路が部門・役職指定（APIから申請不可）のときのエラー文言
ROUTE_BLOCKED_MARKERS = ("役職", "部門")

# 認可そのものが使えない状態。次の手段へは進まずその試行を打ち切る
AUTH_ERRORS = (TokenError, AuthExpired)

WEB_CREDENTIALS_REQUIRED = "web_credentials_required"
WEB_CREDENTIALS_INVALID = "web_credentials_invalid"

LEAVE_TYPES = ("PaidHoliday", "SpecialHoliday", "Absence", "HolidayWork", "OvertimeWork")
HOLIDAY_TYPES = ("full", "half", "morning_off", "afternoon_off", "hour")
# 承認APIが用意されている種別
LEAVE_APPROVAL_KINDS = {
    "PaidHoliday": "paid_holidays",
    "OvertimeWork": "overtime_works",
}

DEFAULT_SETTINGS = {
    "entry_delay_ms": 200,
    "web_entry_delay_ms": 1000,
    "token_refresh_every": 10,
    "default_reason": "打刻漏れのため修正",
}


@dataclass
class CorrectionEntry:
    date: str
    clock_in_at: Optional[str] = None
    clock_out_at: Optional[str] = None
    break_records: list[dict] = field(default_factory=list)
    is_editable: Optional[bool] = None

    @classmethod
    def coerce(cls, value: Union["CorrectionEntry", dict]) -> "CorrectionEntry":
        if isinstance(value, CorrectionEntry):
            return value
        return cls(
            date=value["date"],
            clock_in_at=value.get("clock_in_at"),
            clock_out_at=value.get("clock_out_at"),
            break_records=list(value.get("break_records") or []),
            is_editable=value.get("is_editable"),
        )


@dataclass
class LeaveRequest:
    type: str
    date: str
    holiday_type: str = "full"
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.type not in LEAVE_TYPES:
            raise ValueError(f"Invalid leave type: {self.type}. Valid: {', '.join(LEAVE_TYPES)}")
        if self.holiday_type not in HOLIDAY_TYPES:
            raise ValueError(f"Invalid holiday_type: {self.holiday_type}")


@dataclass
class EntryResult:
    date: str
    success: bool
    method: str
    error: Optional[str] = None
    request_id: Optional[int] = None


@dataclass
class BatchResult:
    results: list[EntryResult]
    strategy_info: dict

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "results": [asdict(r) for r in self.results],
            "succeeded": self.succeeded,
            "failed": self.failed,
            "strategy_info": self.strategy_info,
        }


@dataclass
class StrategyReport:
    month: str
    direct_ok: bool
    approval_ok: bool
    time_clock_ok: bool
    best_strategy: str
    detected_at: str
    cached: bool
    web_credentials_configured: bool


@dataclass
class WithdrawResult:
    request_id: int
    success: bool
    method: str
    error: Optional[str] = None


@dataclass
class ApprovalRoutes:
    primary_id: Optional[int] = None
    fallback_id: Optional[int] = None
    primary_user_id: Optional[int] = None
    needs_approver: bool = False

    @property
    def route_id(self) -> Optional[int]:
        return self.primary_id or self.fallback_id

    @property
    def available(self) -> bool:
        return self.route_id is not None


def find_attendance_routes(routes: list[dict]) -> ApprovalRoutes:
    """勤怠申請に使える承認経路を選ぶ

    第一候補は usages に AttendanceWorkflow を含む経路、
    予備はシステム定義で用途指定のない経路（「指定なし」）。
    """
    result = ApprovalRoutes()
    primary = next((r for r in routes if "AttendanceWorkflow" in (r.get("usages") or [])), None)
    if primary is not None:
        result.primary_id = primary.get("id")
        result.primary_user_id = primary.get("user_id")
        # 「承認者を指定」型の経路は approver_id が必要
        result.needs_approver = "指定" in (primary.get("name") or "") and not primary.get("user_id")

    system = next((r for r in routes if r.get("definition_system") is True and not r.get("usages")), None)
    if system is not None:
        result.fallback_id = system.get("id")
    return result


def correction_times(entry: CorrectionEntry) -> Optional[CorrectionTimes]:
    """Webフォーム入力用の時・分。出退勤のどちらかが無ければNone"""
    clock_in = extract_hour_minute(entry.clock_in_at)
    clock_out = extract_hour_minute(entry.clock_out_at)
    if clock_in is None or clock_out is None:
        return None
    times = CorrectionTimes(clock_in=clock_in, clock_out=clock_out)
    if entry.break_records:
        first = entry.break_records[0]
        start = extract_hour_minute(first.get("clock_in_at"))
        end = extract_hour_minute(first.get("clock_out_at"))
        if start and end:
            times.break_start, times.break_end = start, end
    return times


def _contains_any(message: str, markers: tuple) -> bool:
    return any(m in message for m in markers)


@dataclass
class _BatchFlags:
    direct_disabled: bool = False
    approval_blocked: bool = False
    time_clock_allowed: bool = True
    time_clock_succeeded: bool = False
    time_clock_blocked: bool = False


class WritePipeline:
    def __init__(
        self,
        client: FreeeApiClient,
        ledger: StrategyLedger,
        guard: SessionGuard,
        execution_log: ExecutionLog,
        credentials: BrowserCredentials = None,
        clock: Clock = None,
        settings: dict = None,
        tasks: TaskRegistry = None,
        notifier=None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self._client = client
        self._ledger = ledger
        self._guard = guard
        self._log = execution_log
        self._credentials = credentials or BrowserCredentials.from_env()
        self._clock = clock or Clock()
        self._settings = {**DEFAULT_SETTINGS, **(settings or {})}
        self._tasks = tasks
        self._notifier = notifier
        self._sleep = sleep

    async def _pause(self, key: str) -> None:
        delay = self._settings[key]
        if delay:
            await self._sleep(delay / 1000)

    async def _refresh_token(self) -> None:
        """長いバッチの途中でトークンを更新する。失敗しても現在のトークンで続ける"""
        try:
            await self._client.ensure_valid_token()
        except TokenError as e:
            logger.warning("[Pipeline] バッチ途中のトークン更新に失敗 (%s): %s", e.code, e)

    @staticmethod
    def _auth_failure(date: str, error: AttendanceError) -> EntryResult:
        return EntryResult(date=date, success=False, method="api", error=f"{error.code}: {error}")

    async def _find_routes(self) -> ApprovalRoutes:
        try:
            return find_attendance_routes(await self._client.list_approval_routes())
        except AUTH_ERRORS:
            raise
        except AttendanceError as e:
            logger.warning("[Pipeline] 承認経路を取得できません: %s", e)
            return ApprovalRoutes()

    # ------------------------------------------------------------------
    # 勤務時間の修正
    # ------------------------------------------------------------------

    async def submit_correction(self, entry: Union[CorrectionEntry, dict], reason: str = None) -> EntryResult:
        """1日分の修正（バッチと同じ手順）"""
        batch = await self.submit_batch([entry], reason)
        return batch.results[0]

    def submit_batch_async(self, entries: list, reason: str = None) -> str:
        """バッチをバックグラウンドで実行し、TaskRegistryのIDを返す"""
        if self._tasks is None:
            raise RuntimeError("WritePipeline has no task registry")
        return self._tasks.dispatch(self.submit_batch(entries, reason))

    async def submit_batch(self, entries: list, reason: str = None) -> BatchResult:
        entries = [CorrectionEntry.coerce(e) for e in entries or []]
        if not entries:
            raise ValueError("entries must not be empty")

        # トークン・アプリ認証情報の不備はここで即座に例外にする
        await self._client.ensure_valid_token()

        routes = await self._find_routes()
        has_approval = routes.available
        self_user_id = None
        if routes.needs_approver:
            try:
                self_user_id = (await self._client.get_me()).get("id")
            except AUTH_ERRORS:
                raise
            except AttendanceError as e:
                logger.warning("[Pipeline] 自分のユーザーIDを取得できません: %s", e)

        month = self._clock.month_str()
        cached = self._ledger.get(month, WORK_TIME)
        flags = _BatchFlags()
        if cached is not None:
            flags.direct_disabled = not cached.allows("direct")
            flags.approval_blocked = not cached.allows("approval")
            flags.time_clock_allowed = cached.allows("time_clock")

        skip_api = cached is not None and cached.best_strategy == "web"
        logger.info(
            "[Pipeline] バッチ開始: %d件 approval=%s route=%s cached_best=%s",
            len(entries),
            has_approval,
            routes.route_id,
            cached.best_strategy if cached else None,
        )

        results: list[EntryResult] = []
        web_queue: list[CorrectionEntry] = []
        auth_error: Optional[AttendanceError] = None
        # 途中で失敗しても書き込み済みの分は必ず記録する
        try:
            if skip_api:
                logger.info("[Pipeline] キャッシュ上の最適手段がwebのためAPIを飛ばします")
                web_queue = list(entries)
            else:
                refresh_every = self._settings["token_refresh_every"]
                for i, entry in enumerate(entries):
                    if auth_error is not None:
                        results.append(self._auth_failure(entry.date, auth_error))
                        continue
                    if i > 0 and refresh_every and i % refresh_every == 0:
                        await self._refresh_token()

                    try:
                        result = await self._write_entry(entry, reason, routes, self_user_id, flags)
                    except AUTH_ERRORS as e:
                        auth_error = e
                        logger.error("[Pipeline] 認可エラーのため残り %d 件のAPI書き込みを中止: %s", len(entries) - i, e)
                        results.append(self._auth_failure(entry.date, e))
                        continue
                    if result is None:
                        web_queue.append(entry)
                    else:
                        results.append(result)
                    await self._pause("entry_delay_ms")

            if web_queue:
                results.extend(await self._submit_web_corrections(web_queue, reason))
        finally:
            self._update_ledger(month, cached, flags, has_approval, skip_api)
            self._audit(results)

        batch = BatchResult(
            results=results,
            strategy_info={
                "auth_error": auth_error.code if auth_error is not None else None,
                "direct_disabled": flags.direct_disabled,
                "approval_route_blocked": flags.approval_blocked,
                "web_fallback_used": bool(web_queue) and self._credentials.configured,
                "web_credentials_configured": self._credentials.configured,
                "web_credentials_invalid": any(r.error == WEB_CREDENTIALS_INVALID for r in results),
            },
        )
        logger.info("[Pipeline] バッチ完了: %d/%d 成功", batch.succeeded, len(results))
        if self._notifier is not None:
            self._notifier.notify_batch(batch)
        return batch

    async def _write_entry(
        self,
        entry: CorrectionEntry,
        reason: Optional[str],
        routes: ApprovalRoutes,
        self_user_id: Optional[int],
        flags: _BatchFlags,
    ) -> Optional[EntryResult]:
        """API手段を順に試す。すべて失敗したらNone（Web行き）"""
        editable = entry.is_editable if entry.is_editable is not None else True

        if not flags.direct_disabled and (editable or not routes.available):
            try:
                await self._client.put_work_record(entry.date, self._direct_body(entry))
                logger.info("[%s] 直接書き込み成功", entry.date)
                return EntryResult(date=entry.date, success=True, method="direct")
            except AUTH_ERRORS:
                raise
            except AttendanceError as e:
                if _contains_any(str(e), DIRECT_DISABLED_MARKERS):
                    flags.direct_disabled = True
                    logger.info("[%s] 会社設定で直接書き込みが無効のため次の手段へ", entry.date)
                else:
                    logger.warning("[%s] 直接書き込み失敗: %s", entry.date, str(e)[:120])

        if routes.available and not flags.approval_blocked:
            try:
                data = await self._post_approval(entry, reason, routes, self_user_id)
                request_id = (data.get("work_time") or {}).get("id") or data.get("id")
                logger.info("[%s] 承認申請成功 (id=%s)", entry.date, request_id)
                return EntryResult(date=entry.date, success=True, method="approval", request_id=request_id)
            except AUTH_ERRORS:
                raise
            except RouteUnsupported as e:
                flags.approval_blocked = True
                logger.info("[%s] 承認経路が部門・役職指定のため打刻APIへ: %s", entry.date, e)
            except AttendanceError as e:
                logger.warning("[%s] 承認申請失敗: %s", entry.date, str(e)[:120])

        if flags.time_clock_allowed:
            try:
                await self._post_time_clocks(entry)
                flags.time_clock_succeeded = True
                logger.info("[%s] 打刻APIで登録成功", entry.date)
                return EntryResult(date=entry.date, success=True, method="time_clock")
            except AUTH_ERRORS:
                raise
            except PermissionDenied as e:
                # 権限がないのは会社設定なので当月は使わない
                flags.time_clock_blocked = True
                flags.time_clock_allowed = False
                logger.warning("[%s] 打刻APIの権限がありません: %s", entry.date, str(e)[:120])
            except AttendanceError as e:
                logger.warning("[%s] API手段がすべて失敗: %s", entry.date, str(e)[:150])
        return None

    def _direct_body(self, entry: CorrectionEntry) -> dict:
        body = {}
        if entry.clock_in_at:
            body["clock_in_at"] = to_freee_datetime(entry.clock_in_at, entry.date)
        if entry.clock_out_at:
            body["clock_out_at"] = to_freee_datetime(entry.clock_out_at, entry.date)
        if entry.break_records:
            body["break_records"] = [
                {
                    "clock_in_at": to_freee_datetime(br.get("clock_in_at"), entry.date),
                    "clock_out_at": to_freee_datetime(br.get("clock_out_at"), entry.date),
                }
                for br in entry.break_records
            ]
        return body

    async def _post_approval(
        self,
        entry: CorrectionEntry,
        reason: Optional[str],
        routes: ApprovalRoutes,
        self_user_id: Optional[int],
    ) -> dict:
        route_id = routes.route_id
        body: dict[str, Any] = {"target_date": entry.date, "approval_flow_route_id": route_id}
        if routes.needs_approver and route_id == routes.primary_id:
            body["approver_id"] = routes.primary_user_id or self_user_id

        # 承認APIの時刻は "HH:MM"
        if entry.clock_in_at or entry.clock_out_at:
            work_record = {}
            if entry.clock_in_at:
                work_record["clock_in_at"] = to_time_only(entry.clock_in_at)
            if entry.clock_out_at:
                work_record["clock_out_at"] = to_time_only(entry.clock_out_at)
            body["work_records"] = [work_record]
        if entry.break_records:
            body["break_records"] = [
                {
                    "clock_in_at": to_time_only(br.get("clock_in_at")),
                    "clock_out_at": to_time_only(br.get("clock_out_at")),
                }
                for br in entry.break_records
            ]
        if reason:
            body["comment"] = reason

        try:
            return await self._client.post_approval_request("work_times", body)
        except ApiError as e:
            if _contains_any(e.detail, ROUTE_BLOCKED_MARKERS):
                raise RouteUnsupported(str(e)) from e
            raise

    async def _post_time_clocks(self, entry: CorrectionEntry) -> int:
        punches = []
        if entry.clock_in_at:
            punches.append(("clock_in", entry.clock_in_at))
        for br in entry.break_records:
            if br.get("clock_in_at"):
                punches.append(("break_begin", br["clock_in_at"]))
            if br.get("clock_out_at"):
                punches.append(("break_end", br["clock_out_at"]))
        if entry.clock_out_at:
            punches.append(("clock_out", entry.clock_out_at))

        for clock_type, value in punches:
            await self._client.post_time_clock(clock_type, entry.date, to_freee_datetime(value, entry.date))
            await self._pause("entry_delay_ms")
        return len(punches)

    async def _submit_web_corrections(self, entries: list[CorrectionEntry], reason: Optional[str]) -> list[EntryResult]:
        if not self._credentials.configured:
            logger.warning("[Pipeline] Webログイン情報が未設定のため %d 件を処理できません", len(entries))
            return [
                EntryResult(date=e.date, success=False, method="all_failed", error=WEB_CREDENTIALS_REQUIRED)
                for e in entries
            ]

        reason = reason or self._settings["default_reason"]
        logger.info("[Pipeline] %d 件をfreee Webから申請します", len(entries))
        results: list[EntryResult] = []
        try:
            async with self._guard.session() as session:
                try:
                    await session.login()
                except (LoginFailed, CredentialsNotConfigured) as e:
                    logger.error("[Pipeline] Webログイン失敗 (%s): %s", e.code, e)
                    return [
                        EntryResult(date=e_.date, success=False, method="web", error=WEB_CREDENTIALS_INVALID)
                        for e_ in entries
                    ]

                for entry in entries:
                    times = correction_times(entry)
                    if times is None:
                        results.append(
                            EntryResult(
                                date=entry.date,
                                success=False,
                                method="web",
                                error="Missing clock_in or clock_out time",
                            )
                        )
                        continue
                    try:
                        form = await session.submit_correction(entry.date, times, reason)
                        results.append(EntryResult(date=entry.date, success=form.success, method="web", error=form.error))
                    except Exception as e:
                        logger.error("[%s] Web申請失敗: %s", entry.date, e)
                        results.append(EntryResult(date=entry.date, success=False, method="web", error=str(e)))
                    await self._pause("web_entry_delay_ms")
        except Exception as e:
            logger.error("[Pipeline] Webセッションが失敗しました: %s", e)
            done = {r.date for r in results}
            for entry in entries:
                if entry.date not in done:
                    results.append(EntryResult(date=entry.date, success=False, method="web", error=str(e)))
        return results

    def _update_ledger(
        self,
        month: str,
        cached: Optional[StrategyCacheEntry],
        flags: _BatchFlags,
        has_approval: bool,
        skip_api: bool,
    ) -> None:
        if skip_api:
            self._ledger.set(
                month, WORK_TIME, cached.direct_ok, cached.approval_ok, cached.time_clock_ok, cached.best_strategy
            )
            return

        previous_tc = cached.time_clock_ok if cached else True
        if flags.time_clock_succeeded:
            time_clock_ok = True
        elif flags.time_clock_blocked:
            time_clock_ok = False
        else:
            time_clock_ok = previous_tc

        direct_ok = not flags.direct_disabled
        approval_ok = has_approval and not flags.approval_blocked
        self._ledger.set(
            month,
            WORK_TIME,
            direct_ok,
            approval_ok,
            time_clock_ok,
            cheapest_available(direct_ok, approval_ok, time_clock_ok),
        )

    def _audit(self, results: list[EntryResult], action_type: str = "batch_correction") -> None:
        for r in results:
            detail = f"method={r.method}" if r.success else f"method={r.method} | {r.error or 'Unknown error'}"
            self._log.append(
                ExecutionLogEntry(
                    action_type=action_type,
                    scheduled_time=r.date,
                    executed_at=self._clock.timestamp(),
                    status="success" if r.success else "failure",
                    trigger="batch",
                    error_message=detail,
                )
            )

    # ------------------------------------------------------------------
    # 休暇・残業などの申請
    # ------------------------------------------------------------------

    async def submit_leave(self, request: LeaveRequest) -> EntryResult:
        """休暇申請。直接書き込み → 承認API → Web の順（打刻APIは使わない）"""
        op = request.type
        month = self._clock.month_str()
        cached = self._ledger.get(month, op)
        caps = {
            "direct": cached.direct_ok if cached else True,
            "approval": cached.approval_ok if cached else True,
        }

        result = None
        auth_failed = False
        if not self._client.is_configured():
            logger.info("[Pipeline] API未認可のため %s はWebから申請します", op)
        else:
            try:
                result = await self._submit_leave_api(request, cached, caps)
            except AUTH_ERRORS as e:
                auth_failed = True
                logger.error("[%s] %s は認可エラーのため中止: %s", request.date, op, e)
                result = self._auth_failure(request.date, e)

        if result is None:
            result = await self._submit_web_leave(request)

        # 認可エラーは手段の可否とは関係ないので記録しない
        if self._client.is_configured() and not auth_failed:
            self._ledger.set(month, op, caps["direct"], caps["approval"], False)
        self._audit([result], action_type=f"leave_{op}")
        logger.info("[%s] %s 申請: %s (%s)", request.date, op, "成功" if result.success else "失敗", result.method)
        return result

    async def _submit_leave_api(
        self, request: LeaveRequest, cached: Optional[StrategyCacheEntry], caps: dict
    ) -> Optional[EntryResult]:
        """直接書き込み → 承認API。会社単位で使えないと分かった手段は caps に反映する"""
        op = request.type

        def allowed(tier: str) -> bool:
            return cached is None or cached.allows(tier)

        kind = LEAVE_APPROVAL_KINDS.get(op)
        if kind is None:
            caps["approval"] = False

        direct_body = self._leave_direct_body(request)
        if direct_body is not None and allowed("direct"):
            try:
                await self._client.put_work_record(request.date, direct_body)
                return EntryResult(date=request.date, success=True, method="direct")
            except AUTH_ERRORS:
                raise
            except AttendanceError as e:
                if _contains_any(str(e), DIRECT_DISABLED_MARKERS):
                    caps["direct"] = False
                logger.warning("[%s] %s の直接書き込み失敗: %s", request.date, op, str(e)[:120])

        if kind is None or not allowed("approval"):
            return None

        routes = await self._find_routes()
        if not routes.available:
            caps["approval"] = False
            return None
        try:
            data = await self._post_leave_approval(kind, request, routes)
        except AUTH_ERRORS:
            raise
        except RouteUnsupported as e:
            caps["approval"] = False
            logger.info("[%s] %s の承認経路はAPI非対応: %s", request.date, op, e)
            return None
        except AttendanceError as e:
            logger.warning("[%s] %s の承認申請失敗: %s", request.date, op, str(e)[:120])
            return None
        request_id = (data.get(kind[:-1]) or {}).get("id") or data.get("id")
        return EntryResult(date=request.date, success=True, method="approval", request_id=request_id)

    @staticmethod
    def _leave_direct_body(request: LeaveRequest) -> Optional[dict]:
        """勤怠記録へ直接書ける種別ならPUTの本文を返す"""
        if request.type == "PaidHoliday" and request.holiday_type == "full":
            return {"paid_holidays": [{"type": "full"}]}
        if request.type == "SpecialHoliday":
            return {"special_holidays": [{"type": request.holiday_type}]}
        if request.type == "Absence":
            return {"is_absence": True}
        if request.type == "OvertimeWork" and request.start_time and request.end_time:
            return {
                "clock_in_at": to_freee_datetime(request.start_time, request.date),
                "clock_out_at": to_freee_datetime(request.end_time, request.date),
            }
        return None

    async def _post_leave_approval(self, kind: str, request: LeaveRequest, routes: ApprovalRoutes) -> dict:
        body: dict[str, Any] = {"target_date": request.date, "approval_flow_route_id": routes.route_id}
        if kind == "paid_holidays":
            body["holiday_type"] = request.holiday_type
        if request.start_time:
            body["start_at"] = to_time_only(request.start_time)
        if request.end_time:
            body["end_at"] = to_time_only(request.end_time)
        if request.reason:
            body["comment"] = request.reason
        try:
            return await self._client.post_approval_request(kind, body)
        except ApiError as e:
            if _contains_any(e.detail, ROUTE_BLOCKED_MARKERS):
                raise RouteUnsupported(str(e)) from e
            raise

    async def _submit_web_leave(self, request: LeaveRequest) -> EntryResult:
        if not self._credentials.configured:
            return EntryResult(date=request.date, success=False, method="all_failed", error=WEB_CREDENTIALS_REQUIRED)

        options = {"start_time": request.start_time, "end_time": request.end_time, "reason": request.reason}
        try:
            async with self._guard.session() as session:
                try:
                    await session.login()
                except (LoginFailed, CredentialsNotConfigured) as e:
                    logger.error("[Pipeline] Webログイン失敗 (%s): %s", e.code, e)
                    return EntryResult(date=request.date, success=False, method="web", error=WEB_CREDENTIALS_INVALID)
                form = await session.submit_leave_request(request.type, request.date, options)
        except Exception as e:
            logger.error("[%s] %s のWeb申請失敗: %s", request.date, request.type, e)
            return EntryResult(date=request.date, success=False, method="web", error=str(e))
        return EntryResult(date=request.date, success=form.success, method="web", error=form.error)

    # ------------------------------------------------------------------
    # 手段の判定・申請の取り下げ
    # ------------------------------------------------------------------

    async def detect_strategy(self, force: bool = False, operation_type: str = WORK_TIME) -> StrategyReport:
        """読み取りのみで使える手段を調べる（当月分はキャッシュを返す）"""
        month = self._clock.month_str()
        if not force:
            cached = self._ledger.get(month, operation_type)
            if cached is not None:
                logger.info("[Strategy] キャッシュ利用 %s: best=%s", month, cached.best_strategy)
                return self._report(cached, cached=True)

        await self._client.ensure_valid_token()
        today = self._clock.today_str()
        direct_ok = approval_ok = time_clock_ok = False

        try:
            record = await self._client.get_work_record(today)
            # 書き込まずに判定するため is_editable を目安にする
            direct_ok = record.get("is_editable") is not False
        except (*AUTH_ERRORS, RateLimited):
            raise
        except AttendanceError as e:
            logger.info("[Strategy] 勤怠記録を読めません: %s", str(e)[:100])

        routes = await self._find_routes()
        approval_ok = routes.available

        try:
            await self._client.list_time_clocks(today, today, limit=1)
            time_clock_ok = True
        except (*AUTH_ERRORS, RateLimited):
            raise
        except AttendanceError as e:
            logger.info("[Strategy] 打刻APIにアクセスできません: %s", str(e)[:100])

        entry = self._ledger.set(month, operation_type, direct_ok, approval_ok, time_clock_ok)
        logger.info(
            "[Strategy] 判定完了 %s: best=%s (direct=%s approval=%s time_clock=%s)",
            month,
            entry.best_strategy,
            direct_ok,
            approval_ok,
            time_clock_ok,
        )
        return self._report(entry, cached=False)

    def _report(self, entry: StrategyCacheEntry, cached: bool) -> StrategyReport:
        return StrategyReport(
            month=entry.month,
            direct_ok=entry.direct_ok,
            approval_ok=entry.approval_ok,
            time_clock_ok=entry.time_clock_ok,
            best_strategy=entry.best_strategy,
            detected_at=entry.detected_at,
            cached=cached,
            web_credentials_configured=self._credentials.configured,
        )

    async def withdraw_request(self, request_id: int, kind: str = "work_times") -> WithdrawResult:
        """申請の取り下げ: 取消アクション → DELETE → Web画面"""
        try:
            result = await self._withdraw(int(request_id), kind)
        except AUTH_ERRORS as e:
            logger.error("[Pipeline] 申請 %s の取り下げを認可エラーのため中止: %s", request_id, e)
            result = WithdrawResult(request_id=int(request_id), success=False, method="api", error=f"{e.code}: {e}")
        self._log.append(
            ExecutionLogEntry(
                action_type="withdraw_request",
                scheduled_time=str(request_id),
                executed_at=self._clock.timestamp(),
                status="success" if result.success else "failure",
                trigger="manual",
                error_message=f"method={result.method}" + (f" | {result.error}" if result.error else ""),
            )
        )
        return result

    async def _withdraw(self, request_id: int, kind: str) -> WithdrawResult:
        last_error = None
        if self._client.is_configured():
            detail = {}
            try:
                data = await self._client.get_approval_request(kind, request_id)
                detail = data.get(kind[:-1] if kind.endswith("s") else kind) or {}
            except AUTH_ERRORS:
                raise
            except AttendanceError as e:
                logger.info("[Pipeline] 申請 %s の詳細を取得できません: %s", request_id, e)

            try:
                await self._client.cancel_approval_request(
                    kind, request_id, detail.get("current_round") or 1, detail.get("current_step_id")
                )
                logger.info("[Pipeline] 申請 %s を取消しました", request_id)
                return WithdrawResult(request_id=request_id, success=True, method="cancel")
            except AUTH_ERRORS:
                raise
            except AttendanceError as e:
                logger.info("[Pipeline] 取消アクション失敗 (%s)、DELETEを試します", e)

            try:
                await self._client.delete_approval_request(kind, request_id)
                logger.info("[Pipeline] 申請 %s を削除しました", request_id)
                return WithdrawResult(request_id=request_id, success=True, method="delete")
            except AUTH_ERRORS:
                raise
            except AttendanceError as e:
                last_error = str(e)
                logger.warning("[Pipeline] 申請 %s の削除に失敗: %s", request_id, e)

        if not self._credentials.configured:
            return WithdrawResult(
                request_id=request_id, success=False, method="all_failed", error=last_error or WEB_CREDENTIALS_REQUIRED
            )

        try:
            async with self._guard.session() as session:
                await session.login()
                form = await session.withdraw_request(kind, request_id)
        except Exception as e:
            logger.error("[Pipeline] 申請 %s のWeb取り下げに失敗: %s", request_id, e)
            return WithdrawResult(request_id=request_id, success=False, method="web", error=str(e))
        return WithdrawResult(request_id=request_id, success=form.success, method="web", error=form.error)
