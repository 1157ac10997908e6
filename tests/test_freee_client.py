# tests/test_freee_client.py
import json
import time
from urllib.parse import parse_qsl

import httpx
import pytest

from services.errors import (
    ApiError,
    AppCredentialsMissing,
    AuthExpired,
    NoRefreshToken,
    PermissionDenied,
    RateLimited,
    RefreshFailed,
)
from services.freee_client import FreeeApiClient, MemoryTokenStore, OAuthTokens
from services.stamper_interface import ActionType, AttendanceState

API = "/hr/api/v1"


def _tokens(**overrides) -> OAuthTokens:
    values = {
        "client_id": "cid",
        "client_secret": "secret",
        "access_token": "access",
        "refresh_token": "refresh",
        "expires_at": int(time.time()) + 3600,
        "company_id": "10",
        "employee_id": "20",
    }
    values.update(overrides)
    return OAuthTokens(**values)


def _client(handler, tokens: OAuthTokens = None) -> tuple[FreeeApiClient, MemoryTokenStore]:
    store = MemoryTokenStore(tokens or _tokens())
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FreeeApiClient(store, http_client=http), store


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "types, expected",
    [
        (["break_end"], AttendanceState.ON_BREAK),
        (["break_begin", "clock_out"], AttendanceState.WORKING),
        (["clock_out"], AttendanceState.WORKING),
        (["clock_in"], AttendanceState.NOT_CHECKED_IN),
        ([], AttendanceState.CHECKED_OUT),
    ],
)
async def test_detect_state_from_available_types(types, expected):
    """打刻可能な種別から状態を判定すること"""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"{API}/employees/20/time_clocks/available_types"
        assert request.headers["Authorization"] == "Bearer access"
        return httpx.Response(200, json={"available_types": types})

    client, _ = _client(handler)
    assert await client.detect_state() == expected


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [(401, AuthExpired), (403, PermissionDenied), (429, RateLimited)],
)
async def test_http_errors_are_typed(status, error):
    def handler(request):
        return httpx.Response(status, json={"message": "denied"})

    client, _ = _client(handler)
    with pytest.raises(error) as exc_info:
        await client.get_me()
    assert "denied" in str(exc_info.value)


@pytest.mark.asyncio
async def test_other_errors_carry_status_and_message():
    """freeeのエラー構造からメッセージを取り出すこと"""

    def handler(request):
        return httpx.Response(400, json={"errors": [{"type": "validation", "messages": ["勤怠修正は無効です"]}]})

    client, _ = _client(handler)
    with pytest.raises(ApiError) as exc_info:
        await client.put_work_record("2026-03-02", {"clock_in_at": "2026-03-02 09:00:00"})
    assert exc_info.value.status == 400
    assert exc_info.value.detail == "勤怠修正は無効です"
    assert "API_ERROR_400" in str(exc_info.value)


@pytest.mark.asyncio
async def test_refreshes_expired_token_and_rotates():
    """期限切れならリフレッシュし、新しいリフレッシュトークンを保存すること"""
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.host == "accounts.secure.freee.co.jp":
            form = dict(parse_qsl(request.content.decode()))
            assert form["grant_type"] == "refresh_token"
            assert form["refresh_token"] == "refresh"
            return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 21600})
        assert request.headers["Authorization"] == "Bearer new-access"
        return httpx.Response(200, json={"id": 1})

    client, store = _client(handler, _tokens(expires_at=0))
    assert await client.get_me() == {"id": 1}

    tokens = store.load()
    assert tokens.access_token == "new-access"
    assert tokens.refresh_token == "new-refresh"
    assert tokens.expires_at > int(time.time())
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_refresh_within_margin():
    """失効5分前を切っていれば更新すること"""

    def handler(request):
        if request.url.host == "accounts.secure.freee.co.jp":
            return httpx.Response(200, json={"access_token": "new-access", "expires_in": 21600})
        return httpx.Response(200, json={})

    client, store = _client(handler, _tokens(expires_at=int(time.time()) + 60))
    assert await client.ensure_valid_token() == "new-access"
    assert store.load().refresh_token == "refresh"


@pytest.mark.asyncio
async def test_refresh_without_refresh_token():
    client, _ = _client(lambda r: httpx.Response(200), _tokens(expires_at=0, refresh_token=""))
    with pytest.raises(NoRefreshToken):
        await client.ensure_valid_token()


@pytest.mark.asyncio
async def test_refresh_without_app_credentials():
    client, _ = _client(lambda r: httpx.Response(200), _tokens(expires_at=0, client_secret=""))
    with pytest.raises(AppCredentialsMissing):
        await client.ensure_valid_token()


@pytest.mark.asyncio
async def test_refresh_rejected():
    client, _ = _client(lambda r: httpx.Response(400, json={"error": "invalid_grant"}), _tokens(expires_at=0))
    with pytest.raises(RefreshFailed) as exc_info:
        await client.ensure_valid_token()
    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_ensure_user_info_from_me():
    """company_id / employee_id が未設定なら /users/me から取得すること"""

    def handler(request):
        if request.url.path == f"{API}/users/me":
            return httpx.Response(200, json={"companies": [{"id": 3, "employee_id": 4}]})
        assert request.url.path == f"{API}/employees/4/time_clocks/available_types"
        assert request.url.params["company_id"] == "3"
        return httpx.Response(200, json={"available_types": ["clock_in"]})

    client, store = _client(handler, _tokens(company_id="", employee_id=""))
    assert await client.detect_state() == AttendanceState.NOT_CHECKED_IN
    assert store.load().employee_id == "4"


@pytest.mark.asyncio
async def test_ensure_user_info_without_company():
    client, _ = _client(lambda r: httpx.Response(200, json={"companies": []}), _tokens(company_id=""))
    with pytest.raises(PermissionDenied):
        await client.ensure_user_info()


@pytest.mark.asyncio
async def test_punches_for_day():
    """打刻履歴を時刻順の Punch に変換すること"""

    def handler(request):
        assert request.url.params["from_date"] == "2026-03-02"
        return httpx.Response(
            200,
            json=[
                {"type": "clock_out", "datetime": "2026-03-02T18:01:00.000+09:00"},
                {"type": "clock_in", "datetime": "2026-03-02T09:02:00.000+09:00"},
                {"type": "unknown_type", "datetime": "2026-03-02T10:00:00.000+09:00"},
            ],
        )

    client, _ = _client(handler)
    punches = await client.punches_for("2026-03-02")
    assert [(p.type, p.time) for p in punches] == [
        (ActionType.CHECKIN, "09:02"),
        (ActionType.CHECKOUT, "18:01"),
    ]


@pytest.mark.asyncio
async def test_clock_action_posts_clock_type():
    sent = {}

    def handler(request):
        sent["path"] = request.url.path
        sent["body"] = json.loads(request.content)
        return httpx.Response(201, json={"employee_time_clock": {"id": 1}})

    client, _ = _client(handler)
    await client.clock_action(ActionType.BREAK_START, "2026-03-02")
    assert sent["path"] == f"{API}/employees/20/time_clocks"
    assert sent["body"] == {"company_id": 10, "type": "break_begin", "base_date": "2026-03-02"}


@pytest.mark.asyncio
async def test_cancel_and_delete_approval_request():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, json.loads(request.content) if request.content else None))
        return httpx.Response(204)

    client, _ = _client(handler)
    assert await client.cancel_approval_request("work_times", 42, 1, 9) == {}
    assert await client.delete_approval_request("work_times", 42) == {}
    assert seen[0] == (
        "POST",
        f"{API}/approval_requests/work_times/42/actions",
        {"approval_action": "cancel", "target_round": 1, "target_step_id": 9},
    )
    assert seen[1][:2] == ("DELETE", f"{API}/approval_requests/work_times/42")


@pytest.mark.asyncio
async def test_verify_connection():
    def handler(request):
        return httpx.Response(
            200,
            json={"display_name": "山田", "email": "yamada@example.com", "companies": [{"id": 10, "employee_id": 20}]},
        )

    client, _ = _client(handler)
    info = await client.verify_connection()
    assert info == {"company_id": 10, "employee_id": 20, "display_name": "山田", "email": "yamada@example.com"}
    await client.close()


def test_is_configured():
    assert MemoryTokenStore(OAuthTokens(refresh_token="r")).is_configured() is True
    assert MemoryTokenStore(OAuthTokens()).is_configured() is False
