"""Slack 通道: 斜杠命令入口 + 频道投递

Slack 要求 3 秒内确认斜杠命令，因此处理器先 ack()，再访问事件存储并通过 respond() 回复。
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from channels.base import NotificationSink
from core.command_processor import CommandProcessor
from events import bus, E
from logger import logger

__all__ = ["SlackNotificationSink", "create_slack_app", "make_command_handler"]

INTERNAL_ERROR_REPLY = "⚠️ 处理命令时发生内部错误，请稍后重试。"


class SlackNotificationSink(NotificationSink):
    def __init__(self, client: AsyncWebClient, channel_id: str) -> None:
        self.client = client
        self.channel_id = channel_id

    @property
    def enabled(self) -> bool:
        return bool(self.channel_id)

    async def send(self, text: str) -> bool:
        if not self.enabled:
            logger.warning("未配置 TARGET_CHANNEL_ID，自动提醒已禁用")
            return False

        try:
            await self.client.chat_postMessage(channel=self.channel_id, text=text)
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else None
            logger.error(f"向 Slack 频道 {self.channel_id} 发送消息失败: {error or e}")
            return False
        except Exception as e:
            logger.opt(exception=e).error(f"向 Slack 频道 {self.channel_id} 发送消息失败: {e}")
            return False

        logger.debug(f"已向 Slack 频道 {self.channel_id} 发送消息: {text!r}")
        return True


def make_command_handler(processor: CommandProcessor) -> Callable[..., Awaitable[None]]:
    async def handle_command(ack: Callable[..., Awaitable[Any]], respond: Callable[..., Awaitable[Any]], command: dict) -> None:
        await ack()

        text = (command.get("text") or "").strip()
        logger.info(f"收到斜杠命令 {command.get('command', processor.command_name)} 来自 {command.get('user_id')}: {text!r}")
        bus.emit(E.COMMAND_RECEIVED, user_id=command.get("user_id"), text=text)

        try:
            reply = await processor.handle(text)
        except Exception:
            logger.exception(f"处理斜杠命令失败: {text!r}")
            reply = INTERNAL_ERROR_REPLY
        await respond(reply)

    return handle_command


def create_slack_app(bot_token: str, signing_secret: str, processor: CommandProcessor) -> AsyncApp:
    app = AsyncApp(token=bot_token, signing_secret=signing_secret)
    app.command(processor.command_name)(make_command_handler(processor))

    @app.error
    async def handle_errors(error: Exception) -> None:
        logger.opt(exception=error).error(f"Slack Bolt 错误: {error}")

    return app
