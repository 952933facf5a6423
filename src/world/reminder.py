"""
提醒调度循环

注意: 到期判断只看分钟桶 (MinuteKey) 是否与当前分钟完全相等，不做补发。
进程停机期间错过的那一分钟对应的事件会一直保持 notified=False。
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Callable, List, Tuple

from channels.base import NotificationSink
from datamodel import Event, MinuteKey
from events import bus, E
from logger import logger
from storage.event_store import EventStore
from utils import now_fixed

__all__ = ["ReminderScheduler", "format_reminder"]

DEFAULT_INTERVAL_SECONDS = 30.0


def format_reminder(event: Event) -> str:
    return f"⏰ 事件提醒\n{event.display_time()}  {event.title}"


class ReminderScheduler:
    def __init__(
        self,
        store: EventStore,
        sink: NotificationSink,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = now_fixed,
    ) -> None:
        self.store = store
        self.sink = sink
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._tick_lock = asyncio.Lock()
        self._shutdown_event: asyncio.Event | None = None
        self.last_tick_at_epoch: float | None = None
        self.tick_count = 0

    def get_status(self) -> dict[str, object]:
        running = self._shutdown_event is not None and not self._shutdown_event.is_set()
        return {
            "running": running,
            "tick_in_progress": self._tick_lock.locked(),
            "last_tick_at_epoch": self.last_tick_at_epoch,
            "tick_count": self.tick_count,
            "interval_seconds": self.interval_seconds,
            "delivery_enabled": self.sink.enabled,
        }

    async def main_loop(self, shutdown_event: asyncio.Event) -> None:
        self._shutdown_event = shutdown_event
        logger.info(f"Reminder 主循环已启动, 间隔 {self.interval_seconds} 秒")

        while not shutdown_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Reminder tick 执行失败")

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Reminder 主循环已关闭")

    async def tick(self) -> int:
        """执行一次到期检查，返回本次成功投递的数量"""
        if self._tick_lock.locked():
            logger.warning("上一次 Reminder tick 仍在执行，跳过本次检查")
            return 0

        async with self._tick_lock:
            self.last_tick_at_epoch = time.time()
            self.tick_count += 1
            bus.emit(E.SCHEDULER_TICK)
            return await self._run_tick()

    async def _run_tick(self) -> int:
        now_key = MinuteKey.from_datetime(self._clock())
        events = await self.store.load()
        due = self._select_due(events, now_key)
        if not due:
            return 0

        if not self.sink.enabled:
            logger.warning(f"未配置 TARGET_CHANNEL_ID，自动提醒已禁用，跳过 {len(due)} 条到期事件")
            return 0

        delivered: List[Tuple[int, str]] = []
        for event in due:
            if await self._deliver(event):
                delivered.append((event.id, event.scheduled_at))

        if delivered:
            await self.store.mark_notified(delivered)
        return len(delivered)

    def _select_due(self, events: List[Event], now_key: MinuteKey) -> List[Event]:
        due = []
        for event in events:
            if event.notified:
                continue
            key = event.due_key()
            if key is None:
                logger.warning(f"事件时间无法解析，跳过: id={event.id}, scheduled_at={event.scheduled_at!r}")
                continue
            if key == now_key:
                due.append(event)
        return due

    async def _deliver(self, event: Event) -> bool:
        text = format_reminder(event)
        try:
            ok = await self.sink.send(text)
        except Exception:
            logger.exception(f"投递提醒时发生异常: id={event.id}")
            ok = False

        if ok:
            logger.info(f"已发送提醒: id={event.id}, {event.display_time()} {event.title}")
            bus.emit(E.REMINDER_SENT, record=event)
        else:
            logger.error(f"提醒发送失败: id={event.id}")
            bus.emit(E.REMINDER_FAILED, record=event)
        return ok
