"""
运行时指标，通过事件总线累计命令、提醒投递与调度 tick 的次数，供管理 API 查看。
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from events import bus, E


@dataclass
class RuntimeMetrics:
    command_count: int = 0
    events_created_count: int = 0
    events_removed_count: int = 0
    reminder_sent_count: int = 0
    reminder_failed_count: int = 0
    tick_count: int = 0
    last_command_at: float | None = None
    last_reminder_at: float | None = None

    def record_command(self) -> None:
        self.command_count += 1
        self.last_command_at = time.time()

    def record_event_created(self) -> None:
        self.events_created_count += 1

    def record_event_removed(self) -> None:
        self.events_removed_count += 1

    def record_reminder_sent(self) -> None:
        self.reminder_sent_count += 1
        self.last_reminder_at = time.time()

    def record_reminder_failed(self) -> None:
        self.reminder_failed_count += 1

    def record_tick(self) -> None:
        self.tick_count += 1

    def snapshot(self) -> dict:
        return {
            "command_count": self.command_count,
            "events_created_count": self.events_created_count,
            "events_removed_count": self.events_removed_count,
            "reminder_sent_count": self.reminder_sent_count,
            "reminder_failed_count": self.reminder_failed_count,
            "tick_count": self.tick_count,
            "last_command_at_epoch": self.last_command_at,
            "last_reminder_at_epoch": self.last_reminder_at,
            "last_reminder_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_reminder_at))
                if self.last_reminder_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


@bus.on(E.COMMAND_RECEIVED)
def _on_command_received(**_: object) -> None:
    runtime_metrics.record_command()


@bus.on(E.EVENT_CREATED)
def _on_event_created(**_: object) -> None:
    runtime_metrics.record_event_created()


@bus.on(E.EVENT_REMOVED)
def _on_event_removed(**_: object) -> None:
    runtime_metrics.record_event_removed()


@bus.on(E.REMINDER_SENT)
def _on_reminder_sent(**_: object) -> None:
    runtime_metrics.record_reminder_sent()


@bus.on(E.REMINDER_FAILED)
def _on_reminder_failed(**_: object) -> None:
    runtime_metrics.record_reminder_failed()


@bus.on(E.SCHEDULER_TICK)
def _on_scheduler_tick(**_: object) -> None:
    runtime_metrics.record_tick()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
