"""时间工具

所有事件时间统一使用固定时区 UTC+09:00，与宿主机时区无关。
"""

from datetime import datetime, timedelta, timezone
import re

__all__ = [
    "FIXED_OFFSET", "MINUTE_FORMAT",
    "now_fixed", "to_fixed", "format_fixed", "fixed_iso",
    "parse_fixed_date_time", "parse_iso",
]

FIXED_OFFSET = timezone(timedelta(hours=9), "JST")
MINUTE_FORMAT = "%Y-%m-%d %H:%M"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)
_TIME_RE = re.compile(r"^\d{2}:\d{2}$", re.ASCII)


def now_fixed() -> datetime:
    """获取当前时间 (UTC+09:00)"""
    return datetime.now(timezone.utc).astimezone(FIXED_OFFSET)


def to_fixed(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError(f"缺少时区信息的时间无法换算: {dt!r}")
    return dt.astimezone(FIXED_OFFSET)


def format_fixed(dt: datetime) -> str:
    """格式: 'YYYY-MM-DD HH:MM' (UTC+09:00)"""
    return to_fixed(dt).strftime(MINUTE_FORMAT)


def fixed_iso(dt: datetime) -> str:
    """持久化格式，例如 '2026-01-12T09:30:00+09:00'"""
    return to_fixed(dt).replace(second=0, microsecond=0).isoformat()


def parse_fixed_date_time(date_str: str, time_str: str) -> datetime:
    """把 'YYYY-MM-DD' 与 'HH:MM' 解释为 UTC+09:00 的时刻

    格式不符、小时/分钟越界或日期不存在 (如 02-30) 时抛出 ValueError
    """
    if not _DATE_RE.match(date_str) or not _TIME_RE.match(time_str):
        raise ValueError(f"日期/时间格式错误: {date_str} {time_str}")

    hour, minute = (int(part) for part in time_str.split(":"))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"时间越界: {time_str}")

    naive = datetime.strptime(f"{date_str} {time_str}", MINUTE_FORMAT)
    return naive.replace(tzinfo=FIXED_OFFSET)


def parse_iso(text: str) -> datetime:
    """解析持久化的 ISO 时间，不带时区的视为 UTC+09:00"""
    if not isinstance(text, str) or not text.strip():
        raise ValueError(f"无效的时间字符串: {text!r}")
    dt = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=FIXED_OFFSET)
    return dt.astimezone(FIXED_OFFSET)
