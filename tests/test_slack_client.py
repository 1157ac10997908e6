from unittest.mock import MagicMock, patch

from slack_sdk.errors import SlackApiError

from services.slack_client import (
    ConsoleNotifier,
    SlackNotifier,
    create_notifier,
    format_action_message,
    format_batch_message,
)
from services.stamper_interface import ActionResult, ActionType
from services.write_pipeline import BatchResult, EntryResult


def test_console_notifier_send():
    """ConsoleNotifierがメッセージを出力すること"""
    notifier = ConsoleNotifier()
    with patch("builtins.print") as mock_print:
        result = notifier.send("テストメッセージ")
    assert result is True
    mock_print.assert_called_once()


def test_console_notifier_send_error():
    """ConsoleNotifierがエラーメッセージを出力すること"""
    notifier = ConsoleNotifier()
    with patch("builtins.print") as mock_print:
        result = notifier.send_error("エラー内容")
    assert result is True
    mock_print.assert_called_once()


def test_slack_notifier_send_success():
    """SlackNotifierがメッセージ送信に成功すること"""
    mock_client = MagicMock()
    mock_client.chat_postMessage.return_value = {"ok": True}

    notifier = SlackNotifier(token="xoxb-test", channel="C12345")
    notifier._client = mock_client

    result = notifier.send("テスト通知")
    assert result is True
    mock_client.chat_postMessage.assert_called_once_with(
        channel="C12345", text="テスト通知"
    )


def test_slack_notifier_send_failure():
    """Slack API失敗時にFalseを返すこと"""
    mock_client = MagicMock()
    mock_client.chat_postMessage.side_effect = SlackApiError(
        "channel_not_found", {"ok": False, "error": "channel_not_found"}
    )

    notifier = SlackNotifier(token="xoxb-test", channel="C12345")
    notifier._client = mock_client

    result = notifier.send("テスト通知")
    assert result is False


def test_slack_notifier_fallback():
    """トークン未設定時はコンソールにフォールバックすること"""
    notifier = SlackNotifier(token="", channel="")
    with patch("builtins.print") as mock_print:
        result = notifier.send("フォールバックテスト")
    assert result is True
    mock_print.assert_called_once()


def test_notify_action_failure_goes_to_error():
    notifier = ConsoleNotifier()
    with patch.object(notifier, "send_error", return_value=True) as mock_error:
        notifier.notify_action(ActionType.CHECKIN, ActionResult(status="failure", error="timeout"), "scheduled")
    mock_error.assert_called_once()
    assert "timeout" in mock_error.call_args.args[0]


def test_format_action_message():
    ok = format_action_message(ActionType.CHECKIN, ActionResult(status="success", timestamp="09:00"), "scheduled")
    assert "出勤" in ok
    assert "09:00" in ok
    assert "自動" in ok

    skipped = format_action_message(
        ActionType.CHECKOUT, ActionResult(status="skipped", error="Already checked out"), "manual"
    )
    assert "スキップ" in skipped
    assert "手動" in skipped


def test_format_batch_message():
    batch = BatchResult(
        results=[
            EntryResult(date="2026-03-02", success=True, method="direct"),
            EntryResult(date="2026-03-03", success=False, method="all_failed", error="web_credentials_required"),
        ],
        strategy_info={},
    )
    message = format_batch_message(batch)
    assert "1/2" in message
    assert "2026-03-03" in message
    assert "web_credentials_required" in message


def test_create_notifier():
    config = {"slack": {"enabled": True, "notify_channel": "C999"}}
    assert isinstance(create_notifier(config, token="xoxb-test"), SlackNotifier)
    assert type(create_notifier(config, token="")) is ConsoleNotifier
    assert type(create_notifier({"slack": {"enabled": False}}, token="xoxb-test", channel="C1")) is ConsoleNotifier
