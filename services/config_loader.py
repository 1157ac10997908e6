import copy
from pathlib import Path

import yaml

DEFAULT_CONFIG = {
    "timezone": "Asia/Tokyo",
    # mock / api / browser
    "backend": "mock",
    "auto_checkin_enabled": True,
    "schedule": {
        "checkin": {"enabled": True, "mode": "random", "window_start": "08:50", "window_end": "09:00"},
        "break_start": {"enabled": True, "mode": "random", "window_start": "12:00", "window_end": "12:05"},
        "break_end": {"enabled": True, "mode": "random", "window_start": "12:55", "window_end": "13:00"},
        "checkout": {"enabled": True, "mode": "random", "window_start": "18:00", "window_end": "18:15"},
    },
    "scheduler": {
        "rollover_time": "00:01",
        "keep_schedule_days": 30,
        "probe_retry_count": 3,
        "probe_retry_interval_seconds": 30,
        "fallback_probe_minutes_before": 15,
        "max_break_minutes": 60,
    },
    "api": {
        "base_url": "https://api.freee.co.jp/hr/api/v1",
        "token_url": "https://accounts.secure.freee.co.jp/public_api/token",
        "timeout_seconds": 30,
    },
    "browser": {
        "base_url": "https://p.secure.freee.co.jp",
        "login_url": "https://accounts.secure.freee.co.jp/login/hr",
        "punch_url": "https://p.secure.freee.co.jp/",
        "headless": True,
        "slow_mo_ms": 0,
        "screenshots_dir": "screenshots",
        "company_name": "",
        "other_company_names": [],
        "form_load_attempts": 5,
        "max_waiters": 64,
        "timeouts": {
            "settle_ms": 2000,
            "navigation_ms": 30000,
            "element_ms": 10000,
            "submit_ms": 3000,
            "company_switch_ms": 3000,
        },
        "selectors": {
            "username_field": "input[name='email']",
            "password_field": "input[name='password']",
            "login_button": "button[type='submit']",
            "actions": {
                "checkin": "button:has-text('出勤')",
                "break_start": "button:has-text('休憩開始')",
                "break_end": "button:has-text('休憩終了')",
                "checkout": "button:has-text('退勤')",
            },
            "form_date": "input[name='target_date']",
            "form_submit": "button:has-text('申請')",
            "form_alert": "[role='alert']",
            "form_reason": "textarea",
            "correction": {
                "clock_in_hour": "input[name='clock_in_at_hour']",
                "clock_in_minute": "input[name='clock_in_at_min']",
                "clock_out_hour": "input[name='clock_out_at_hour']",
                "clock_out_minute": "input[name='clock_out_at_min']",
                "break_start_hour": "input[name='break_records.0.clock_in_at_hour']",
                "break_start_minute": "input[name='break_records.0.clock_in_at_min']",
                "break_end_hour": "input[name='break_records.0.clock_out_at_hour']",
                "break_end_minute": "input[name='break_records.0.clock_out_at_min']",
                "break_delete": "button[aria-label='削除']",
            },
            "leave": {
                "start_time": "input[name='start_at']",
                "end_time": "input[name='end_at']",
            },
            "withdraw": {
                "button": "button:has-text('取り下げ')",
                "confirm": "[role='dialog'] button:has-text('取り下げ')",
            },
        },
    },
    "pipeline": {
        "entry_delay_ms": 200,
        "web_entry_delay_ms": 1000,
        "token_refresh_every": 10,
        "default_reason": "打刻漏れのため修正",
    },
    "tasks": {
        "ttl_minutes": 30,
    },
    "slack": {
        "enabled": True,
        "notify_channel": "",
        "fallback": "console",
    },
    "calendar": {
        "enabled": True,
        "custom_holidays": [],
    },
    "logging": {
        "level": "INFO",
        "file": "",
        "max_bytes": 5 * 1024 * 1024,
        "backup_count": 10,
        "execution_log": "",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """ベース設定にオーバーライドをマージする"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str = "config.yaml") -> dict:
    """YAML設定ファイルをロードし、デフォルト設定とマージして返す"""
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
        return _deep_merge(DEFAULT_CONFIG, user_config)
    return copy.deepcopy(DEFAULT_CONFIG)
