"""事件存储

所有修改都按 "读取全部 -> 修改 -> 写回全部" 的方式进行，并由同一把 asyncio.Lock 串行化，
因此命令处理与提醒调度交替执行时不会互相覆盖对方的修改。
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Sequence, Tuple

from datamodel import Event
from events import bus, E
from logger import logger
from storage.base import StoreBackend, StoreConflictError, StoreCorruptedError, StoreSnapshot

__all__ = ["EventStore", "CAS_RETRIES"]

CAS_RETRIES = 3


class EventStore:
    def __init__(self, backend: StoreBackend) -> None:
        self.backend = backend
        self._write_lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return self.backend.name

    async def open(self) -> None:
        await self.backend.open()
        await self._read_snapshot()

    async def close(self) -> None:
        await self.backend.close()

    @staticmethod
    def next_id(events: Sequence[Event]) -> int:
        return max((e.id for e in events if e.id > 0), default=0) + 1

    async def load(self) -> List[Event]:
        snapshot = await self._read_snapshot()
        return [Event.from_dict(record) for record in snapshot.records]

    async def save(self, events: Iterable[Event]) -> None:
        async with self._write_lock:
            await self.backend.write([e.to_dict() for e in events])

    async def add(self, scheduled_at: str, title: str) -> Event:
        def mutate(events: List[Event]) -> Tuple[Event, bool]:
            event = Event(id=self.next_id(events), scheduled_at=scheduled_at, title=title, notified=False)
            events.append(event)
            return event, True

        event = await self._transaction(mutate)
        logger.info(f"创建事件: id={event.id}, scheduled_at={event.scheduled_at}, title={event.title}")
        bus.emit(E.EVENT_CREATED, record=event)
        return event

    async def remove(self, event_id: int) -> bool:
        def mutate(events: List[Event]) -> Tuple[bool, bool]:
            before = len(events)
            events[:] = [e for e in events if e.id != event_id]
            removed = len(events) != before
            return removed, removed

        removed = await self._transaction(mutate)
        if removed:
            logger.info(f"删除事件: id={event_id}")
            bus.emit(E.EVENT_REMOVED, event_id=event_id)
        return removed

    async def mark_notified(self, keys: Iterable[Tuple[int, str]]) -> int:
        """按 (id, scheduled_at) 把尚未通知的事件标记为已通知，只写回一次"""
        targets = set(keys)
        if not targets:
            return 0

        def mutate(events: List[Event]) -> Tuple[int, bool]:
            count = 0
            for e in events:
                if not e.notified and (e.id, e.scheduled_at) in targets:
                    e.notified = True
                    count += 1
            return count, count > 0

        return await self._transaction(mutate)

    async def _read_snapshot(self, locked: bool = False) -> StoreSnapshot:
        """locked 为 True 表示调用方已持有写锁；重新初始化只在写锁内进行"""
        try:
            return await self.backend.read()
        except StoreCorruptedError as e:
            if not locked:
                async with self._write_lock:
                    return await self._read_snapshot(locked=True)
            logger.error(f"事件存储已损坏，按空集合处理并重新初始化: {e}")
            await self.backend.reset()
            return StoreSnapshot(records=[], version=None)

    async def _transaction(self, mutate):
        """mutate(events) -> (result, changed)；changed 为 False 时不写回"""
        async with self._write_lock:
            for attempt in range(1, CAS_RETRIES + 1):
                snapshot = await self._read_snapshot(locked=True)
                events = [Event.from_dict(record) for record in snapshot.records]
                result, changed = mutate(events)
                if not changed:
                    return result
                try:
                    await self.backend.write([e.to_dict() for e in events], expected_version=snapshot.version)
                    return result
                except StoreConflictError:
                    if attempt == CAS_RETRIES:
                        raise
                    logger.warning(f"事件存储写入冲突，重试 ({attempt}/{CAS_RETRIES})")
