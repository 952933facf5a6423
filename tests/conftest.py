import json
from datetime import datetime
from pathlib import Path

import pytest

from channels.base import NotificationSink
from logger import logger
from storage.event_store import EventStore
from storage.json_file import JsonFileBackend
from utils import FIXED_OFFSET


class FakeSink(NotificationSink):
    """记录所有投递内容；results 按顺序给出每次投递的结果"""

    def __init__(self, channel_id: str = "C0TARGET", results=None) -> None:
        self.channel_id = channel_id
        self.results = list(results or [])
        self.sent: list[tuple[str, str]] = []

    @property
    def enabled(self) -> bool:
        return bool(self.channel_id)

    async def send(self, text: str) -> bool:
        self.sent.append((self.channel_id, text))
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return True


class CountingBackend(JsonFileBackend):
    def __init__(self, path) -> None:
        super().__init__(path)
        self.write_count = 0

    async def write(self, records, expected_version=None) -> None:
        self.write_count += 1
        await super().write(records, expected_version)


def jst(year, month, day, hour, minute, second=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=FIXED_OFFSET)


def write_events(path: Path, records: list) -> None:
    path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")


def read_events(path: Path) -> list:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def events_path(tmp_path) -> Path:
    return tmp_path / "data" / "events.json"


@pytest.fixture
def backend(events_path) -> CountingBackend:
    return CountingBackend(events_path)


@pytest.fixture
def store(backend) -> EventStore:
    return EventStore(backend)


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def log_messages():
    """收集 WARNING 及以上级别的 loguru 日志"""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="WARNING")
    yield messages
    logger.remove(handler_id)
