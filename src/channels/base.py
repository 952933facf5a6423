from abc import ABC, abstractmethod


class NotificationSink(ABC):
    """向固定频道投递一条文本消息"""

    @property
    @abstractmethod
    def enabled(self) -> bool:
        pass

    @abstractmethod
    async def send(self, text: str) -> bool:
        """成功返回 True；失败返回 False (由实现负责记录日志)"""
        pass


__all__ = ["NotificationSink"]
