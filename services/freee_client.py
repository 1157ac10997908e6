import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from services.errors import (
    ApiError,
    AppCredentialsMissing,
    AuthExpired,
    NoRefreshToken,
    PermissionDenied,
    RateLimited,
    RefreshFailed,
)
from services.stamper_interface import (
    ACTION_TO_CLOCK_TYPE,
    CLOCK_TYPE_TO_ACTION,
    ActionType,
    AttendanceState,
    Punch,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.freee.co.jp/hr/api/v1"
TOKEN_URL = "https://accounts.secure.freee.co.jp/public_api/token"

# 失効5分前に更新する
REFRESH_MARGIN_SECONDS = 300


@dataclass
class OAuthTokens:
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    company_id: str = ""
    employee_id: str = ""


class MemoryTokenStore:
    """トークン保管（永続化・暗号化は外部の責務。ここでは環境変数から初期化するのみ）"""

    def __init__(self, tokens: OAuthTokens = None):
        self._tokens = tokens or OAuthTokens()

    @classmethod
    def from_env(cls) -> "MemoryTokenStore":
        return cls(
            OAuthTokens(
                client_id=os.getenv("FREEE_CLIENT_ID", ""),
                client_secret=os.getenv("FREEE_CLIENT_SECRET", ""),
                access_token=os.getenv("FREEE_ACCESS_TOKEN", ""),
                refresh_token=os.getenv("FREEE_REFRESH_TOKEN", ""),
                expires_at=int(os.getenv("FREEE_TOKEN_EXPIRES_AT", "0") or 0),
                company_id=os.getenv("FREEE_COMPANY_ID", ""),
                employee_id=os.getenv("FREEE_EMPLOYEE_ID", ""),
            )
        )

    def load(self) -> OAuthTokens:
        return self._tokens

    def save(self, tokens: OAuthTokens) -> None:
        self._tokens = tokens

    def is_configured(self) -> bool:
        t = self._tokens
        return bool(t.refresh_token or t.access_token)


def _error_message(response: httpx.Response) -> str:
    """freeeのエラー構造から読みやすいメッセージを取り出す"""
    body = response.text
    try:
        data = response.json()
    except ValueError:
        return body
    if isinstance(data, dict):
        errors = data.get("errors") or []
        if errors and isinstance(errors[0], dict):
            messages = errors[0].get("messages") or []
            if messages:
                return str(messages[0])
        if data.get("message"):
            return str(data["message"])
    return body


class FreeeApiClient:
    """freee人事労務APIクライアント（OAuth2トークン管理付き）"""

    def __init__(
        self,
        token_store: MemoryTokenStore,
        api_base: str = API_BASE,
        token_url: str = TOKEN_URL,
        http_client: httpx.AsyncClient = None,
        timeout: float = 30.0,
    ):
        self._store = token_store
        self._api_base = api_base.rstrip("/")
        self._token_url = token_url
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        tokens = token_store.load()
        self.company_id = tokens.company_id
        self.employee_id = tokens.employee_id

    def is_configured(self) -> bool:
        return self._store.is_configured()

    async def ensure_valid_token(self) -> str:
        """有効なアクセストークンを返す（必要ならリフレッシュ）。全リクエストの前に呼ぶ"""
        tokens = self._store.load()
        now = int(time.time())
        if tokens.access_token and now < tokens.expires_at - REFRESH_MARGIN_SECONDS:
            return tokens.access_token

        logger.info("[API] アクセストークンの期限切れ（または間近）のため更新します")
        if not tokens.refresh_token:
            raise NoRefreshToken("No refresh token available. Please re-authorize in Settings.")
        if not tokens.client_id or not tokens.client_secret:
            raise AppCredentialsMissing(
                "OAuth app credentials not configured. Set FREEE_CLIENT_ID and FREEE_CLIENT_SECRET."
            )

        response = await self._http.post(
            self._token_url,
            data={
                "grant_type": "refresh_token",
                "client_id": tokens.client_id,
                "client_secret": tokens.client_secret,
                "refresh_token": tokens.refresh_token,
            },
        )
        if response.status_code >= 400:
            logger.error("[API] トークン更新失敗: %s %s", response.status_code, response.text)
            raise RefreshFailed(
                response.status_code,
                f"Token refresh failed ({response.status_code}). Please re-authorize in Settings.",
            )

        data = response.json()
        # リフレッシュトークンは毎回ローテーションされる
        tokens.access_token = data["access_token"]
        tokens.refresh_token = data.get("refresh_token", tokens.refresh_token)
        tokens.expires_at = int(time.time()) + int(data.get("expires_in", 0))
        self._store.save(tokens)
        logger.info("[API] トークン更新完了（有効期限 %ss）", data.get("expires_in"))
        return tokens.access_token

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """認証付きAPIリクエスト。HTTPエラーは型付き例外に変換する"""
        token = await self.ensure_valid_token()
        url = f"{self._api_base}{path}"
        logger.debug("[API] %s %s", method, url)

        response = await self._http.request(
            method,
            url,
            headers={"Authorization": f"Bearer {token}"},
            json=body,
            params=params,
        )

        if response.status_code >= 400:
            msg = _error_message(response)
            logger.warning("[API] %s %s -> %s: %s", method, path, response.status_code, msg[:200])
            if response.status_code == 401:
                raise AuthExpired(f"AUTH_EXPIRED: {msg}")
            if response.status_code == 403:
                raise PermissionDenied(f"PERMISSION_DENIED: {msg}")
            if response.status_code == 429:
                raise RateLimited(f"RATE_LIMITED: {msg}")
            raise ApiError(response.status_code, msg)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def ensure_user_info(self) -> None:
        """company_id / employee_id を /users/me から取得（未設定時のみ）"""
        if self.company_id and self.employee_id:
            return
        data = await self.request("GET", "/users/me")
        companies = data.get("companies") or []
        if not companies:
            raise PermissionDenied("No company found for this user. Check your freee account permissions.")
        company = companies[0]
        self.company_id = str(company["id"])
        self.employee_id = str(company["employee_id"])

        tokens = self._store.load()
        tokens.company_id = self.company_id
        tokens.employee_id = self.employee_id
        self._store.save(tokens)
        logger.info("[API] ユーザー情報: company=%s employee=%s", self.company_id, self.employee_id)

    @property
    def company_id_int(self) -> int:
        return int(self.company_id)

    async def get_me(self) -> dict:
        return await self.request("GET", "/users/me")

    async def available_clock_types(self) -> list[str]:
        await self.ensure_user_info()
        data = await self.request(
            "GET",
            f"/employees/{self.employee_id}/time_clocks/available_types",
            params={"company_id": self.company_id},
        )
        return data.get("available_types") or []

    async def detect_state(self) -> AttendanceState:
        """打刻可能な種別から現在状態を判定"""
        types = await self.available_clock_types()
        logger.debug("[API] 打刻可能種別: %s", types)
        if "break_end" in types:
            return AttendanceState.ON_BREAK
        if "clock_out" in types or "break_begin" in types:
            return AttendanceState.WORKING
        if "clock_in" in types:
            return AttendanceState.NOT_CHECKED_IN
        return AttendanceState.CHECKED_OUT

    async def list_time_clocks(self, from_date: str, to_date: str, limit: int = 100) -> list[dict]:
        await self.ensure_user_info()
        data = await self.request(
            "GET",
            f"/employees/{self.employee_id}/time_clocks",
            params={
                "company_id": self.company_id,
                "from_date": from_date,
                "to_date": to_date,
                "limit": limit,
            },
        )
        if isinstance(data, list):
            return data
        return data.get("time_clocks") or []

    async def punches_for(self, day: str) -> list[Punch]:
        """指定日の打刻履歴を Punch に変換（時刻順）"""
        punches = []
        for item in await self.list_time_clocks(day, day):
            action = CLOCK_TYPE_TO_ACTION.get(item.get("type"))
            stamp = item.get("datetime") or ""
            if action is None or len(stamp) < 16:
                continue
            punches.append(Punch(type=action, time=stamp[11:16]))
        punches.sort(key=lambda p: p.time)
        return punches

    async def post_time_clock(self, clock_type: str, base_date: str, datetime_str: Optional[str] = None) -> dict:
        await self.ensure_user_info()
        body = {"company_id": self.company_id_int, "type": clock_type, "base_date": base_date}
        if datetime_str:
            body["datetime"] = datetime_str
        return await self.request("POST", f"/employees/{self.employee_id}/time_clocks", body)

    async def clock_action(self, action: ActionType, base_date: str) -> dict:
        return await self.post_time_clock(ACTION_TO_CLOCK_TYPE[ActionType(action)], base_date)

    async def get_work_record(self, day: str) -> dict:
        await self.ensure_user_info()
        return await self.request(
            "GET",
            f"/employees/{self.employee_id}/work_records/{day}",
            params={"company_id": self.company_id},
        )

    async def put_work_record(self, day: str, body: dict) -> dict:
        await self.ensure_user_info()
        payload = {"company_id": self.company_id_int}
        payload.update(body)
        return await self.request(
            "PUT",
            f"/employees/{self.employee_id}/work_records/{day}",
            payload,
            params={"company_id": self.company_id},
        )

    async def list_approval_routes(self) -> list[dict]:
        await self.ensure_user_info()
        data = await self.request("GET", "/approval_flow_routes", params={"company_id": self.company_id})
        return data.get("approval_flow_routes") or []

    async def post_approval_request(self, kind: str, body: dict) -> dict:
        await self.ensure_user_info()
        payload = {"company_id": self.company_id_int}
        payload.update(body)
        return await self.request("POST", f"/approval_requests/{kind}", payload)

    async def get_approval_request(self, kind: str, request_id: int) -> dict:
        await self.ensure_user_info()
        return await self.request(
            "GET", f"/approval_requests/{kind}/{request_id}", params={"company_id": self.company_id}
        )

    async def cancel_approval_request(self, kind: str, request_id: int, round_: int, step_id) -> dict:
        await self.ensure_user_info()
        return await self.request(
            "POST",
            f"/approval_requests/{kind}/{request_id}/actions",
            {"approval_action": "cancel", "target_round": round_, "target_step_id": step_id},
            params={"company_id": self.company_id},
        )

    async def delete_approval_request(self, kind: str, request_id: int) -> dict:
        await self.ensure_user_info()
        return await self.request(
            "DELETE", f"/approval_requests/{kind}/{request_id}", params={"company_id": self.company_id}
        )

    async def verify_connection(self) -> dict:
        """トークン更新と /users/me で接続確認"""
        await self.ensure_valid_token()
        data = await self.get_me()
        company = (data.get("companies") or [{}])[0]
        return {
            "company_id": company.get("id"),
            "employee_id": company.get("employee_id"),
            "display_name": data.get("display_name", ""),
            "email": data.get("email", ""),
        }

    async def close(self) -> None:
        await self._http.aclose()
