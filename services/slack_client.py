import logging
import sys

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from services.stamper_interface import ACTION_LABELS, ActionResult, ActionType

logger = logging.getLogger(__name__)

TRIGGER_LABELS = {
    "scheduled": "自動",
    "manual": "手動",
    "immediate": "即時",
    "batch": "一括",
}


def format_action_message(action: ActionType, result: ActionResult, trigger: str) -> str:
    label = ACTION_LABELS[ActionType(action)]
    via = TRIGGER_LABELS.get(trigger, trigger)
    if result.status == "success":
        return f"✅ {label}打刻しました（{via} {result.timestamp}）"
    if result.status == "skipped":
        return f"⏭ {label}をスキップしました（{via}: {result.error}）"
    return f"❌ {label}打刻に失敗しました。手動確認をお願いします（エラー: {result.error}）"


def format_batch_message(batch) -> str:
    lines = [f"📋 勤怠修正: {batch.succeeded}/{len(batch.results)} 件成功"]
    for r in batch.results:
        if r.success:
            lines.append(f"  ✅ {r.date} ({r.method})")
        else:
            lines.append(f"  ❌ {r.date} ({r.method}): {r.error}")
    return "\n".join(lines)


class ConsoleNotifier:
    """コンソール出力による通知（フォールバック用）"""

    def send(self, message: str) -> bool:
        print(f"[勤怠通知] {message}", file=sys.stdout)
        return True

    def send_error(self, error: str) -> bool:
        print(f"[勤怠エラー] {error}", file=sys.stderr)
        return True

    def notify_action(self, action: ActionType, result: ActionResult, trigger: str) -> bool:
        message = format_action_message(action, result, trigger)
        if result.status == "failure":
            return self.send_error(message)
        return self.send(message)

    def notify_batch(self, batch) -> bool:
        return self.send(format_batch_message(batch))


class SlackNotifier(ConsoleNotifier):
    """Slack APIによる通知サービス"""

    def __init__(self, token: str, channel: str):
        self._channel = channel
        self._client = WebClient(token=token) if token else None
        self._fallback = ConsoleNotifier()

    def send(self, message: str) -> bool:
        """メッセージ送信（失敗時はフォールバック）"""
        if self._client is None:
            return self._fallback.send(message)

        try:
            self._client.chat_postMessage(channel=self._channel, text=message)
            return True
        except SlackApiError as e:
            logger.error("[Slack] 送信失敗: %s", e.response.get("error", e))
            return False

    def send_error(self, error: str) -> bool:
        """エラー通知"""
        return self.send(error)


def create_notifier(config: dict, token: str = "", channel: str = "") -> ConsoleNotifier:
    slack = config.get("slack", {})
    channel = channel or slack.get("notify_channel", "")
    if slack.get("enabled") and token and channel:
        return SlackNotifier(token, channel)
    return ConsoleNotifier()
