from logger import setup_logging, logger
from config.settings import Settings, SettingsError, load_settings

import asyncio
import signal
import sys
import time

from slack_bolt.adapter.fastapi.async_handler import AsyncSlackRequestHandler

from admin.app import create_app
from admin.http_server import serve as http_serve
from admin.schemas import RuntimeControl
from channels.slack_app import SlackNotificationSink, create_slack_app
from core.command_processor import CommandProcessor
from storage.base import StoreBackend
from storage.event_store import EventStore
from storage.json_file import JsonFileBackend
from storage.sqlite_kv import SqliteBackend
from world.reminder import ReminderScheduler

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _create_backend(settings: Settings) -> StoreBackend:
    if settings.store_backend == "sqlite":
        return SqliteBackend(settings.events_db)
    return JsonFileBackend(settings.events_file)


async def main(settings: Settings) -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    store = EventStore(_create_backend(settings))
    await store.open()
    logger.info(f"事件存储已就绪: backend={store.backend_name}")

    processor = CommandProcessor(store, command_name=settings.slash_command)
    slack_app = create_slack_app(settings.slack_bot_token, settings.slack_signing_secret, processor)
    sink = SlackNotificationSink(slack_app.client, settings.target_channel_id)
    scheduler = ReminderScheduler(store, sink, interval_seconds=settings.reminder_interval_seconds)

    control = RuntimeControl(
        shutdown_event=shutdown_event,
        started_at=time.time(),
    )
    app = create_app(control, settings, store, scheduler, AsyncSlackRequestHandler(slack_app))

    try:
        await asyncio.gather(
            scheduler.main_loop(shutdown_event),
            http_serve(app, settings.http_host, settings.port, shutdown_event),
        )
    finally:
        logger.info("关闭事件存储...")
        await store.close()
        logger.info("Event Reminder Bot 已关闭")


def run() -> None:
    try:
        settings = load_settings()
    except SettingsError as e:
        logger.critical(f"配置错误: {e}")
        sys.exit(1)

    setup_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        console_level=settings.console_log_level,
    )
    logger.info("启动 Event Reminder Bot...")
    asyncio.run(main(settings))


if __name__ == "__main__":
    run()
