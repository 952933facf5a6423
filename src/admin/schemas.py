from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel

from datamodel import Event


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float


class EventItem(BaseModel):
    id: int
    scheduledAt: str
    title: str
    notified: bool
    display_time: str

    @classmethod
    def from_event(cls, event: Event) -> "EventItem":
        return cls(**event.to_dict(), display_time=event.display_time())


class EventPage(BaseModel):
    items: List[EventItem]
    limit: int
    offset: int
    pending: Optional[bool] = None
    total: int


class TickResult(BaseModel):
    ok: bool = True
    delivered: int
