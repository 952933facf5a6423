from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from utils import FIXED_OFFSET, parse_iso, to_fixed

__all__ = [
    "MinuteKey",
    "Event", "coerce_event_id",
]


# ----------------- 分钟桶 ----------------
@dataclass(frozen=True, order=True)
class MinuteKey:
    """UTC+09:00 下的某一分钟，调度器只按该值是否相等判断到期"""
    year: int
    month: int
    day: int
    hour: int
    minute: int

    @classmethod
    def from_datetime(cls, dt: datetime) -> "MinuteKey":
        local = to_fixed(dt)
        return cls(local.year, local.month, local.day, local.hour, local.minute)

    @classmethod
    def from_iso(cls, text: str) -> "MinuteKey":
        return cls.from_datetime(parse_iso(text))

    def to_datetime(self) -> datetime:
        return datetime(self.year, self.month, self.day, self.hour, self.minute, tzinfo=FIXED_OFFSET)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d} {self.hour:02d}:{self.minute:02d}"


# ----------------- Event 数据模型 ----------------
def coerce_event_id(raw: Any) -> int:
    """把存储中的 id 转成整数，无法解析的一律视为 0"""
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return raw
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return 0
    if value != value or value in (float("inf"), float("-inf")) or not value.is_integer():
        return 0
    return int(value)


@dataclass
class Event:
    id: int
    scheduled_at: str  # 格式: "YYYY-MM-DDTHH:MM:00+09:00"
    title: str
    notified: bool = False

    def scheduled_datetime(self) -> Optional[datetime]:
        try:
            return parse_iso(self.scheduled_at)
        except ValueError:
            return None

    def due_key(self) -> Optional[MinuteKey]:
        dt = self.scheduled_datetime()
        return MinuteKey.from_datetime(dt) if dt is not None else None

    def display_time(self) -> str:
        """'YYYY-MM-DD HH:MM'，无法解析时原样返回"""
        key = self.due_key()
        return str(key) if key is not None else str(self.scheduled_at)

    def sort_key(self) -> tuple:
        dt = self.scheduled_datetime()
        if dt is None:
            return (1, str(self.scheduled_at), self.id)
        return (0, dt, self.id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        # 兼容旧版文件中的 isoJst 字段
        scheduled_at = data.get("scheduledAt", data.get("isoJst", ""))
        return cls(
            id=coerce_event_id(data.get("id")),
            scheduled_at="" if scheduled_at is None else str(scheduled_at),
            title=str(data.get("title") or ""),
            notified=data.get("notified") is True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scheduledAt": self.scheduled_at,
            "title": self.title,
            "notified": self.notified,
        }
