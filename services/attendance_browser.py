import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from services.clock import Clock
from services.errors import AttendanceError, CredentialsNotConfigured, LoginFailed
from services.session_guard import SessionGuard
from services.stamper_interface import (
    ACTION_LABELS,
    ACTION_ORDER,
    ActionResult,
    ActionType,
    AttendanceBackend,
    AttendanceState,
    Punch,
    check_action_valid,
)

logger = logging.getLogger(__name__)

# ログイン失敗の判定（freeeの画面文言に依存する）
LOGIN_FAILURE_URL_PARTS = ("/login", "/session")
LOGIN_FAILURE_TEXTS = (
    "ログインできませんでした",
    "メールアドレスまたはパスワードが正しくありません",
    "ログイン情報が正しくありません",
    "アカウントがロック",
    "Invalid login",
    "incorrect password",
)

# 申請フォーム送信後のエラー判定
FORM_ERROR_TEXTS = ("エラー", "入力してください", "申請できませんでした", "指定してください", "修正してください")
FORM_ERROR_DETAIL = re.compile(
    r"(エラー.{0,100}|入力してください.{0,50}|申請できませんでした.{0,80}|承認者を指定してください.{0,30})"
)

LEAVE_FORM_TYPES = {
    "PaidHoliday": "ApprovalRequest::PaidHoliday",
    "SpecialHoliday": "ApprovalRequest::SpecialHoliday",
    "Absence": "ApprovalRequest::Absence",
    "HolidayWork": "ApprovalRequest::HolidayWork",
    "OvertimeWork": "ApprovalRequest::OvertimeWork",
}


@dataclass
class BrowserCredentials:
    username: str = ""
    password: str = ""

    @classmethod
    def from_env(cls) -> "BrowserCredentials":
        return cls(username=os.getenv("FREEE_USERNAME", ""), password=os.getenv("FREEE_PASSWORD", ""))

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)


@dataclass
class CorrectionTimes:
    clock_in: tuple[int, int]
    clock_out: tuple[int, int]
    break_start: Optional[tuple[int, int]] = None
    break_end: Optional[tuple[int, int]] = None


@dataclass
class FormResult:
    success: bool
    error: Optional[str] = None
    screenshot_before: Optional[str] = None
    screenshot_after: Optional[str] = None


def find_form_error(body_text: str) -> Optional[str]:
    """送信後の画面テキストから入力エラーを拾う。無ければNone"""
    if not any(t in body_text for t in FORM_ERROR_TEXTS):
        return None
    match = FORM_ERROR_DETAIL.search(body_text)
    return match.group(0) if match else "Unknown form error"


def is_login_failure(url: str, body_text: str) -> bool:
    return any(p in url for p in LOGIN_FAILURE_URL_PARTS) or any(t in body_text for t in LOGIN_FAILURE_TEXTS)


class AutomationSession:
    """Playwrightでfreee Webを操作する1回分のセッション

    init() から cleanup() までが1セッション。直接生成せず SessionGuard.session() 経由で使う。
    """

    def __init__(self, credentials: BrowserCredentials, config: dict, clock: Clock = None):
        self._credentials = credentials
        self._config = config["browser"]
        self._selectors = self._config["selectors"]
        self._base_url = self._config["base_url"].rstrip("/")
        self._clock = clock or Clock()
        self._screenshots = Path(self._config["screenshots_dir"])
        self._playwright = None
        self._browser = None
        self._page = None

    async def init(self):
        from playwright.async_api import async_playwright

        self._screenshots.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._config["headless"], slow_mo=self._config.get("slow_mo_ms", 0)
        )
        self._page = await self._browser.new_page()

    async def cleanup(self):
        """ブラウザを閉じる"""
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()
        self._browser = None
        self._playwright = None
        self._page = None

    def _shot_path(self, name: str) -> str:
        stamp = self._clock.now().strftime("%Y-%m-%dT%H-%M-%S")
        return str(self._screenshots / f"{name}-{stamp}.png")

    async def _screenshot(self, name: str) -> Optional[str]:
        path = self._shot_path(name)
        try:
            await self._page.screenshot(path=path)
        except Exception as e:
            logger.warning("[Bot] スクリーンショット失敗 (%s): %s", name, e)
            return None
        return path

    async def _body_text(self) -> str:
        try:
            text = await self._page.inner_text("body")
        except Exception:
            return ""
        return text[:2000]

    async def _settle(self, key: str = "settle_ms"):
        await self._page.wait_for_timeout(self._config["timeouts"][key])

    async def login(self) -> None:
        """ログインし、必要なら事業所を切り替える"""
        if not self._credentials.configured:
            raise CredentialsNotConfigured("freee Web credentials not configured. Set FREEE_USERNAME / FREEE_PASSWORD.")

        logger.info("[Bot] ログインページへ移動: %s", self._config["login_url"])
        await self._page.goto(self._config["login_url"])
        await self._page.fill(self._selectors["username_field"], self._credentials.username)
        await self._page.fill(self._selectors["password_field"], self._credentials.password)
        await self._page.click(self._selectors["login_button"])
        try:
            await self._page.wait_for_load_state(
                "domcontentloaded", timeout=self._config["timeouts"]["navigation_ms"]
            )
        except Exception as e:
            # 読み込みタイムアウトは後続の判定に任せる
            logger.debug("[Bot] ログイン後の読み込み待ちを打ち切り: %s", e)
        await self._settle()

        body = await self._body_text()
        if is_login_failure(self._page.url, body):
            debug_path = await self._screenshot("login-failed")
            raise LoginFailed(
                "freee Web login failed - credentials may be incorrect or expired. "
                f"Page: {body[:150]}",
                debug_screenshot=debug_path,
            )

        logger.info("[Bot] ログイン完了")
        await self.ensure_company()

    async def ensure_company(self) -> None:
        """ログイン直後に別の事業所が開いていれば設定の事業所へ切り替える"""
        target = self._config.get("company_name") or ""
        if not target:
            return

        body = await self._body_text()
        if target in body:
            return

        logger.info("[Bot] 事業所 %s ではないため切り替えます", target)
        for name in self._config.get("other_company_names") or []:
            switcher = await self._page.query_selector(f"text={name}")
            if switcher:
                await switcher.click()
                await self._settle()
                break
        else:
            logger.warning("[Bot] 事業所切り替えボタンが見つかりません")
            return

        target_btn = await self._page.query_selector(f"text={target}")
        if target_btn is None:
            logger.warning("[Bot] 切り替え先 %s が見つかりません", target)
            return
        await target_btn.click()
        await self._page.wait_for_timeout(self._config["timeouts"]["company_switch_ms"])

    async def detect_state(self) -> AttendanceState:
        """操作可能なボタンから現在状態を判定"""
        await self._page.goto(self._config["punch_url"])
        await self._settle()

        enabled = {}
        for action in ACTION_ORDER:
            element = await self._page.query_selector(self._selectors["actions"][action.value])
            if element is None:
                enabled[action] = False
                continue
            try:
                enabled[action] = await element.is_enabled()
            except Exception:
                enabled[action] = False

        logger.debug("[Bot] ボタン有効状態: %s", {a.value: v for a, v in enabled.items()})
        if enabled[ActionType.BREAK_END]:
            return AttendanceState.ON_BREAK
        if enabled[ActionType.CHECKOUT] or enabled[ActionType.BREAK_START]:
            return AttendanceState.WORKING
        if enabled[ActionType.CHECKIN]:
            return AttendanceState.NOT_CHECKED_IN
        return AttendanceState.CHECKED_OUT

    async def execute_action(self, action: ActionType) -> ActionResult:
        """打刻ボタンを押す（前後のスクリーンショット付き）"""
        action = ActionType(action)
        selector = self._selectors["actions"][action.value]
        timeouts = self._config["timeouts"]

        await self._page.wait_for_selector(selector, state="visible", timeout=timeouts["element_ms"])
        before = await self._screenshot(f"{action.value}-before")

        element = await self._page.query_selector(selector)
        if element is None or not await element.is_enabled():
            raise AttendanceError(f"Button {action.value} is not enabled")

        try:
            await self._page.click(selector, timeout=timeouts["element_ms"])
        except Exception:
            await self._page.click(selector, force=True)

        await self._settle()
        after = await self._screenshot(f"{action.value}-after")
        return ActionResult(
            status="success",
            timestamp=self._clock.time_str(),
            screenshot_before=before,
            screenshot_after=after,
        )

    async def capture_error(self, name: str) -> Optional[str]:
        if self._page is None:
            return None
        return await self._screenshot(f"error-{name}")

    async def _open_request_form(self, request_type: str, date: str) -> None:
        """申請フォームを開く。SPAの描画待ちのため数回待ち直す"""
        base = f"{self._base_url}/approval_requests"
        form_url = f"{base}#/requests/new?type={request_type}&target_date={date}"
        timeouts = self._config["timeouts"]

        if not self._page.url.startswith(base):
            await self._page.goto(base, wait_until="domcontentloaded", timeout=timeouts["navigation_ms"])
            await self._settle()
        await self._page.goto(form_url, wait_until="domcontentloaded", timeout=timeouts["navigation_ms"])
        await self._settle()

        attempts = self._config["form_load_attempts"]
        for attempt in range(attempts):
            if await self._page.query_selector(self._selectors["form_date"]):
                return
            wait_ms = 2000 + attempt * 1500
            logger.info("[Bot] フォーム未表示のため %dms 待機 (%d/%d)", wait_ms, attempt + 1, attempts)
            await self._page.wait_for_timeout(wait_ms)

        debug_path = await self._screenshot(f"form-debug-{date}")
        body = await self._body_text()
        raise AttendanceError(
            f"Request form did not load after {attempts} attempts (screenshot: {debug_path}). Page: {body[:200]}"
        )

    async def _fill_time(self, selector: str, value: int) -> None:
        element = await self._page.query_selector(selector)
        if element is None:
            raise AttendanceError(f"Time input {selector} not found")
        await element.click()
        await element.fill(f"{value:02d}")
        await self._page.keyboard.press("Tab")

    async def _fill_text(self, selector: str, value: str) -> None:
        element = await self._page.query_selector(selector)
        if element is not None:
            await element.click()
            await element.fill(value)

    async def _submit_and_inspect(self, name: str) -> FormResult:
        before = await self._screenshot(f"{name}-before")
        submit = await self._page.query_selector(self._selectors["form_submit"])
        if submit is None:
            raise AttendanceError("Submit button not found")
        await submit.click()
        await self._page.wait_for_timeout(self._config["timeouts"]["submit_ms"])
        after = await self._screenshot(f"{name}-after")

        error = find_form_error(await self._body_text())
        if error is None and "requests/new" in self._page.url:
            alert = await self._page.query_selector(self._selectors["form_alert"])
            if alert is not None:
                error = (await alert.text_content()) or "Validation error"
        if error:
            logger.warning("[Bot] フォームエラー (%s): %s", name, error)
            return FormResult(success=False, error=error, screenshot_before=before, screenshot_after=after)
        return FormResult(success=True, screenshot_before=before, screenshot_after=after)

    async def submit_correction(self, date: str, times: CorrectionTimes, reason: str) -> FormResult:
        """勤務時間修正申請をWebフォームから送信する"""
        fields = self._selectors["correction"]
        await self._open_request_form("ApprovalRequest::WorkTime", date)

        await self._fill_time(fields["clock_in_hour"], times.clock_in[0])
        await self._fill_time(fields["clock_in_minute"], times.clock_in[1])
        await self._fill_time(fields["clock_out_hour"], times.clock_out[0])
        await self._fill_time(fields["clock_out_minute"], times.clock_out[1])

        if times.break_start and times.break_end:
            await self._fill_time(fields["break_start_hour"], times.break_start[0])
            await self._fill_time(fields["break_start_minute"], times.break_start[1])
            await self._fill_time(fields["break_end_hour"], times.break_end[0])
            await self._fill_time(fields["break_end_minute"], times.break_end[1])
        else:
            # 休憩なしの場合は既定の空行を削除
            delete_btn = await self._page.query_selector(fields["break_delete"])
            if delete_btn is not None:
                await delete_btn.click()

        if reason:
            await self._fill_text(self._selectors["form_reason"], reason)

        logger.info("[Bot] %s の修正申請を送信します", date)
        return await self._submit_and_inspect(f"web-correction-{date}")

    async def submit_leave_request(self, leave_type: str, date: str, options: dict = None) -> FormResult:
        """休暇・残業などの申請をWebフォームから送信する"""
        options = options or {}
        fields = self._selectors["leave"]
        await self._open_request_form(LEAVE_FORM_TYPES.get(leave_type, f"ApprovalRequest::{leave_type}"), date)

        if options.get("start_time"):
            await self._fill_text(fields["start_time"], options["start_time"])
            await self._page.keyboard.press("Tab")
        if options.get("end_time"):
            await self._fill_text(fields["end_time"], options["end_time"])
            await self._page.keyboard.press("Tab")
        if options.get("reason"):
            await self._fill_text(self._selectors["form_reason"], options["reason"])

        logger.info("[Bot] %s の %s 申請を送信します", date, leave_type)
        return await self._submit_and_inspect(f"leave-{leave_type}-{date}")

    async def withdraw_request(self, kind: str, request_id: int) -> FormResult:
        """申請を取り下げる"""
        fields = self._selectors["withdraw"]
        url = f"{self._base_url}/approval_requests#/requests/{request_id}"
        await self._page.goto(url, wait_until="domcontentloaded", timeout=self._config["timeouts"]["navigation_ms"])
        await self._settle()

        button = await self._page.query_selector(fields["button"])
        if button is None:
            return FormResult(success=False, error=f"Withdraw button not found for {kind} request {request_id}")
        before = await self._screenshot(f"withdraw-{request_id}-before")
        await button.click()

        confirm = await self._page.query_selector(fields["confirm"])
        if confirm is not None:
            await confirm.click()
        await self._page.wait_for_timeout(self._config["timeouts"]["submit_ms"])
        after = await self._screenshot(f"withdraw-{request_id}-after")

        error = find_form_error(await self._body_text())
        return FormResult(success=error is None, error=error, screenshot_before=before, screenshot_after=after)


class BrowserBackend(AttendanceBackend):
    """AutomationSession経由で状態取得・打刻する。全操作はSessionGuardで直列化"""

    name = "browser"

    def __init__(self, guard: SessionGuard, clock: Clock = None):
        self._guard = guard
        self._clock = clock or Clock()

    async def detect_state(self) -> AttendanceState:
        async with self._guard.session() as session:
            await session.login()
            return await session.detect_state()

    async def today_punches(self) -> list[Punch]:
        # 画面からは打刻履歴を取らない
        return []

    async def execute_action(self, action: ActionType) -> ActionResult:
        action = ActionType(action)
        started = self._clock.now()
        async with self._guard.session() as session:
            try:
                await session.login()
                state = await session.detect_state()
                reason = check_action_valid(action, state)
                if reason:
                    logger.info("[Bot] %sをスキップ: %s", ACTION_LABELS[action], reason)
                    return ActionResult(
                        status="skipped",
                        error=reason,
                        duration_ms=self._clock.elapsed_ms(started),
                        detected_state=state,
                    )
                result = await session.execute_action(action)
                result.duration_ms = self._clock.elapsed_ms(started)
                result.detected_state = state
                logger.info("[Bot] %s完了", ACTION_LABELS[action])
                return result
            except Exception as e:
                logger.error("[Bot] %s失敗: %s", action.value, e)
                return ActionResult(
                    status="failure",
                    error=str(e),
                    duration_ms=self._clock.elapsed_ms(started),
                    screenshot_after=await session.capture_error(action.value),
                )

    async def close(self) -> None:
        pass
