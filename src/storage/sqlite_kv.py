"""SQLite 后端：整个事件集合作为一条 JSON 文档存放，写入按版本号做比较交换"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

import aiosqlite

from logger import logger
from storage.base import StoreBackend, StoreConflictError, StoreCorruptedError, StoreSnapshot

__all__ = ["SqliteBackend"]

_SLOT = 0


class SqliteBackend(StoreBackend):
    name = "sqlite"

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn: aiosqlite.Connection | None = None

    def _ensure_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise RuntimeError("数据库未初始化，请先调用 open()")
        return self.conn

    async def open(self) -> None:
        if self.conn is not None:
            return
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
        self.conn = await aiosqlite.connect(self.db_path)
        await self._migrate()

    async def close(self) -> None:
        if self.conn is not None:
            await self.conn.close()
            self.conn = None

    async def _migrate(self) -> None:
        conn = self._ensure_conn()
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            user_version = row[0]

        if user_version < 1:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS event_store (
                    slot INTEGER PRIMARY KEY CHECK (slot = 0),
                    payload TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at_utc TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            await conn.execute("PRAGMA user_version = 1")

        # 数据库升级逻辑可以在这里继续添加
        await conn.execute(
            "INSERT OR IGNORE INTO event_store (slot, payload, version) VALUES (?, '[]', 0)",
            (_SLOT,),
        )
        await conn.commit()

    async def read(self) -> StoreSnapshot:
        conn = self._ensure_conn()
        async with conn.execute("SELECT payload, version FROM event_store WHERE slot = ?", (_SLOT,)) as cursor:
            row = await cursor.fetchone()

        if row is None:
            await self._migrate()
            return StoreSnapshot(records=[], version=0)

        payload, version = row
        if not payload or not payload.strip():
            return StoreSnapshot(records=[], version=version)
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise StoreCorruptedError(f"event_store.payload 不是合法的 JSON: {e}") from e
        if not isinstance(data, list):
            raise StoreCorruptedError(f"event_store.payload 顶层不是数组: {type(data).__name__}")

        records = [item for item in data if isinstance(item, dict)]
        logger.trace(f"读取事件集合: version={version}, {len(records)} 条")
        return StoreSnapshot(records=records, version=version)

    async def write(self, records: List[Dict[str, Any]], expected_version: Optional[int] = None) -> None:
        conn = self._ensure_conn()
        payload = json.dumps(records, ensure_ascii=False, indent=2)
        if expected_version is None:
            cursor = await conn.execute(
                "UPDATE event_store SET payload = ?, version = version + 1, updated_at_utc = CURRENT_TIMESTAMP WHERE slot = ?",
                (payload, _SLOT),
            )
        else:
            cursor = await conn.execute(
                "UPDATE event_store SET payload = ?, version = version + 1, updated_at_utc = CURRENT_TIMESTAMP WHERE slot = ? AND version = ?",
                (payload, _SLOT, expected_version),
            )
        updated = cursor.rowcount
        await cursor.close()
        await conn.commit()

        if updated == 0:
            raise StoreConflictError(f"事件集合已被修改 (expected_version={expected_version})")
        logger.trace(f"写入事件集合: {len(records)} 条")

    async def reset(self) -> None:
        conn = self._ensure_conn()
        async with conn.execute("SELECT payload FROM event_store WHERE slot = ?", (_SLOT,)) as cursor:
            row = await cursor.fetchone()
        if row is not None:
            logger.warning(f"损坏的事件集合原文 (已丢弃): {row[0][:200]!r}")
        await self.write([])
