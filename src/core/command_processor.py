"""斜杠命令处理

命令格式: `<子命令> [参数...]`，每次调用彼此独立，不保存会话状态。
- add YYYY-MM-DD HH:MM 标题
- list
- remove|del|delete ID
"""

from __future__ import annotations

import re
from typing import Awaitable, Callable, Dict

from logger import logger
from storage.event_store import EventStore
from utils import fixed_iso, parse_fixed_date_time

__all__ = ["CommandProcessor", "LIST_LIMIT"]

LIST_LIMIT = 50

REMOVE_ALIASES = ("remove", "del", "delete")

_ID_RE = re.compile(r"-?\d+", re.ASCII)


class CommandProcessor:
    def __init__(self, store: EventStore, command_name: str = "/event") -> None:
        self.store = store
        self.command_name = command_name
        self._handlers: Dict[str, Callable[[list[str]], Awaitable[str]]] = {
            "add": self._cmd_add,
            "list": self._cmd_list,
        }
        for alias in REMOVE_ALIASES:
            self._handlers[alias] = self._cmd_remove

    def help_text(self) -> str:
        cmd = self.command_name
        return "\n".join([
            "用法:",
            f"• {cmd} add YYYY-MM-DD HH:MM 标题",
            f"• {cmd} list",
            f"• {cmd} remove ID  (也可用 del)",
            "",
            "示例:",
            f"• {cmd} add 2026-01-12 20:27 周会提醒",
            f"• {cmd} remove 3",
        ])

    async def handle(self, text: str | None) -> str:
        tokens = (text or "").split()
        if not tokens:
            return self.help_text()

        sub = tokens[0].lower()
        handler = self._handlers.get(sub)
        if handler is None:
            logger.debug(f"无法识别的子命令: {tokens[0]}")
            return "❓ 无法识别的子命令。\n" + self.help_text()
        return await handler(tokens[1:])

    async def _cmd_add(self, args: list[str]) -> str:
        if len(args) < 3:
            return "❌ 格式错误。\n" + self.help_text()

        date_str, time_str = args[0], args[1]
        title = " ".join(args[2:])

        try:
            scheduled = parse_fixed_date_time(date_str, time_str)
        except ValueError as e:
            logger.debug(f"add 参数校验失败: {e}")
            return "❌ 日期/时间格式错误 (YYYY-MM-DD / HH:MM)。\n" + self.help_text()

        event = await self.store.add(fixed_iso(scheduled), title)
        return f"登记成功 ✅ ID={event.id}\n{event.display_time()}  {event.title}"

    async def _cmd_list(self, args: list[str]) -> str:
        events = sorted(await self.store.load(), key=lambda e: e.sort_key())
        if not events:
            return "暂无事件。"

        lines = [f"事件列表 (最多 {LIST_LIMIT} 条)"]
        for e in events[:LIST_LIMIT]:
            status = "✅" if e.notified else "⏳"
            lines.append(f"• [{e.id}] {e.display_time()}  {e.title}  {status}")
        return "\n".join(lines)

    async def _cmd_remove(self, args: list[str]) -> str:
        usage = f"例: {self.command_name} remove 3"
        if not args:
            return "❌ remove 格式错误。\n" + usage

        if not _ID_RE.fullmatch(args[0]):
            return "❌ ID 必须是数字。\n" + usage
        event_id = int(args[0])

        if await self.store.remove(event_id):
            return f"删除成功 ✅ ID={event_id}"
        return f"⚠️ 未找到 ID={event_id} 的事件。"
