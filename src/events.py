"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

总线只用于旁路通知 (统计、审计)，核心流程不依赖任何处理器的返回值。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Any, Callable

from logger import logger

Handler = Callable[..., Any]


# 事件名集中定义
class E:
    COMMAND_RECEIVED = "command.received"
    EVENT_CREATED = "event.created"
    EVENT_REMOVED = "event.removed"
    REMINDER_SENT = "reminder.sent"
    REMINDER_FAILED = "reminder.failed"
    SCHEDULER_TICK = "scheduler.tick"


class Bus(AsyncIOEventEmitter):
    def on(self, event: str) -> Callable[[Handler], Handler]:
        """注册事件处理器装饰器"""
        def decorator(handler: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {handler.__name__}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator


bus = Bus()

__all__ = ["bus", "E", "Bus"]
