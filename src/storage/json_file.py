from __future__ import annotations

import asyncio
import json
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from logger import logger
from storage.base import StoreBackend, StoreCorruptedError, StoreSnapshot

__all__ = ["JsonFileBackend"]


class JsonFileBackend(StoreBackend):
    """单个 JSON 数组文件，写入走 临时文件 + fsync + os.replace"""

    name = "json"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def open(self) -> None:
        await asyncio.to_thread(self._ensure_file)

    async def read(self) -> StoreSnapshot:
        records = await asyncio.to_thread(self._read_sync)
        return StoreSnapshot(records=records)

    async def write(self, records: List[Dict[str, Any]], expected_version: Optional[int] = None) -> None:
        await asyncio.to_thread(self._write_sync, records)

    async def reset(self) -> None:
        await asyncio.to_thread(self._reset_sync)

    def _ensure_file(self) -> None:
        """文件不存在时以 O_EXCL 创建空数组，已存在则不动"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("[]\n")
            f.flush()
            os.fsync(f.fileno())
        logger.info(f"事件文件不存在，已创建空文件: {self.path}")

    def _read_sync(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            self._ensure_file()

        raw_bytes = self.path.read_bytes()
        if not raw_bytes.strip():
            # 空文件交由 EventStore 在写锁内重新初始化
            raise StoreCorruptedError(f"{self.path} 为空")

        try:
            # utf-8-sig: 手工编辑时带上的 BOM 不算损坏
            data = json.loads(raw_bytes.decode("utf-8-sig"))
        except UnicodeDecodeError as e:
            raise StoreCorruptedError(f"{self.path} 不是合法的 UTF-8: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreCorruptedError(f"{self.path} 不是合法的 JSON: {e}") from e
        if not isinstance(data, list):
            raise StoreCorruptedError(f"{self.path} 顶层不是数组: {type(data).__name__}")

        records = [item for item in data if isinstance(item, dict)]
        if len(records) != len(data):
            logger.warning(f"忽略 {len(data) - len(records)} 条非对象记录: {self.path}")
        logger.trace(f"读取事件文件: {self.path}, {len(records)} 条")
        return records

    def _write_sync(self, records: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.trace(f"写入事件文件: {self.path}, {len(records)} 条")

    def _reset_sync(self) -> None:
        if self.path.exists() and self.path.read_bytes().strip():
            backup = self.path.with_name(f"{self.path.name}.corrupt-{time.strftime('%Y%m%d%H%M%S')}")
            shutil.copy2(self.path, backup)
            logger.warning(f"损坏的事件文件已备份到: {backup}")
        self._write_sync([])
