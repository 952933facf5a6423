from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

__all__ = ["StoreBackend", "StoreSnapshot", "StoreError", "StoreCorruptedError", "StoreConflictError"]


class StoreError(Exception):
    pass


class StoreCorruptedError(StoreError):
    """持久化内容无法解析为事件数组"""


class StoreConflictError(StoreError):
    """写入时发现数据已被其他写者修改 (版本号不一致)"""


@dataclass
class StoreSnapshot:
    records: List[Dict[str, Any]] = field(default_factory=list)
    version: Optional[int] = None  # None 表示后端不支持版本比较


class StoreBackend(ABC):
    """整体读写事件集合的持久化后端"""

    name: str = "base"

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def read(self) -> StoreSnapshot:
        """读取全部记录；资源不存在时创建空集合。内容损坏时抛出 StoreCorruptedError"""

    @abstractmethod
    async def write(self, records: List[Dict[str, Any]], expected_version: Optional[int] = None) -> None:
        """整体替换全部记录；expected_version 不为 None 且与当前版本不一致时抛出 StoreConflictError"""

    @abstractmethod
    async def reset(self) -> None:
        """把损坏的资源恢复为空集合"""
