"""进程配置

只在进程入口调用一次 load_settings()，得到的 Settings 再显式传给各个组件。
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv
from logger import logger

__all__ = ["Settings", "SettingsError", "load_settings"]

_STORE_BACKENDS = ("json", "sqlite")
_DEFAULT_INTERVAL_SECONDS = 30.0
_DEFAULT_PORT = 3000


class SettingsError(Exception):
    pass


@dataclass(frozen=True)
class Settings:
    slack_bot_token: str
    slack_signing_secret: str
    target_channel_id: str = ""
    http_host: str = "0.0.0.0"
    port: int = _DEFAULT_PORT
    slash_command: str = "/event"
    slack_commands_path: str = "/slack/commands"
    store_backend: str = "json"
    events_file: str = "data/events.json"
    events_db: str = "data/events.db"
    reminder_interval_seconds: float = _DEFAULT_INTERVAL_SECONDS
    admin_auth_token: str = ""
    log_file: str = "logs/eventbot.log"
    log_level: str = "DEBUG"
    console_log_level: str = "INFO"

    @property
    def delivery_enabled(self) -> bool:
        return bool(self.target_channel_id)


def _get_str(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def _parse_port(env: Mapping[str, str]) -> int:
    raw = _get_str(env, "PORT", str(_DEFAULT_PORT))
    try:
        port = int(raw)
    except ValueError:
        logger.warning(f"PORT 非法: {raw}, 已回退到 {_DEFAULT_PORT}")
        return _DEFAULT_PORT
    if not (0 < port < 65536):
        logger.warning(f"PORT 越界: {port}, 已回退到 {_DEFAULT_PORT}")
        return _DEFAULT_PORT
    return port


def _parse_interval(env: Mapping[str, str]) -> float:
    # 间隔必须明显小于一分钟，否则可能整个跳过某个分钟桶
    raw = _get_str(env, "REMINDER_INTERVAL_SECONDS", str(_DEFAULT_INTERVAL_SECONDS))
    try:
        interval = float(raw)
    except ValueError:
        logger.warning(f"REMINDER_INTERVAL_SECONDS 非法: {raw}, 已回退到 {_DEFAULT_INTERVAL_SECONDS} 秒")
        return _DEFAULT_INTERVAL_SECONDS
    if not (1 <= interval <= 59):
        logger.warning(f"REMINDER_INTERVAL_SECONDS 应在 1~59 之间: {interval}, 已回退到 {_DEFAULT_INTERVAL_SECONDS} 秒")
        return _DEFAULT_INTERVAL_SECONDS
    return interval


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    bot_token = _get_str(env, "SLACK_BOT_TOKEN")
    signing_secret = _get_str(env, "SLACK_SIGNING_SECRET")
    missing = [name for name, value in (("SLACK_BOT_TOKEN", bot_token), ("SLACK_SIGNING_SECRET", signing_secret)) if not value]
    if missing:
        raise SettingsError(f"缺少必要的环境变量: {', '.join(missing)}")

    store_backend = _get_str(env, "STORE_BACKEND", "json").lower()
    if store_backend not in _STORE_BACKENDS:
        raise SettingsError(f"STORE_BACKEND 非法: {store_backend}, 仅支持 json 或 sqlite")

    slash_command = _get_str(env, "SLASH_COMMAND", "/event")
    if not slash_command.startswith("/"):
        slash_command = "/" + slash_command

    target_channel_id = _get_str(env, "TARGET_CHANNEL_ID")
    if not target_channel_id:
        logger.warning("未设置 TARGET_CHANNEL_ID，自动提醒将被禁用")

    return Settings(
        slack_bot_token=bot_token,
        slack_signing_secret=signing_secret,
        target_channel_id=target_channel_id,
        http_host=_get_str(env, "HTTP_HOST", "0.0.0.0"),
        port=_parse_port(env),
        slash_command=slash_command,
        slack_commands_path=_get_str(env, "SLACK_COMMANDS_PATH", "/slack/commands"),
        store_backend=store_backend,
        events_file=_get_str(env, "EVENTS_FILE", "data/events.json"),
        events_db=_get_str(env, "EVENTS_DB", "data/events.db"),
        reminder_interval_seconds=_parse_interval(env),
        admin_auth_token=_get_str(env, "ADMIN_AUTH_TOKEN"),
        log_file=_get_str(env, "LOG_FILE", "logs/eventbot.log"),
        log_level=_get_str(env, "LOG_LEVEL", "DEBUG").upper(),
        console_log_level=_get_str(env, "CONSOLE_LOG_LEVEL", "INFO").upper(),
    )
