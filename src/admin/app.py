from __future__ import annotations

import asyncio
import time
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse
from slack_bolt.adapter.fastapi.async_handler import AsyncSlackRequestHandler

from config.settings import Settings
from logger import logger
from metrics import runtime_metrics
from storage.event_store import EventStore
from world.reminder import ReminderScheduler

from .auth import admin_guard
from .schemas import EventItem, EventPage, RuntimeControl, TickResult


def create_app(
    control: RuntimeControl,
    settings: Settings,
    store: EventStore,
    scheduler: ReminderScheduler,
    slack_handler: AsyncSlackRequestHandler | None = None,
) -> FastAPI:
    app = FastAPI(title="Event Reminder Bot", version="1.0.0")

    if not settings.admin_auth_token:
        logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")
    require_auth = admin_guard(settings.admin_auth_token)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug(f"REQ {request.method} {request.url.path}")
        return await call_next(request)

    if slack_handler is not None:
        @app.post(settings.slack_commands_path, include_in_schema=False)
        async def slack_commands(request: Request):
            return await slack_handler.handle(request)

        logger.info(f"已挂载 Slack 斜杠命令路由: {settings.slack_commands_path}")

    @app.get("/health", include_in_schema=False)
    async def health() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/metrics", dependencies=[Depends(require_auth)])
    async def get_metrics() -> dict[str, Any]:
        return {
            "runtime": runtime_metrics.snapshot(),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "shutdown_requested": control.shutdown_event.is_set(),
            "components": {
                "reminder": scheduler.get_status(),
                "store": {"backend": store.backend_name},
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/events", response_model=EventPage, dependencies=[Depends(require_auth)])
    async def get_events(
        pending: bool | None = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ) -> EventPage:
        events = sorted(await store.load(), key=lambda e: e.sort_key())
        if pending is not None:
            events = [e for e in events if e.notified is not pending]

        return EventPage(
            items=[EventItem.from_event(e) for e in events[offset:offset + limit]],
            limit=limit,
            offset=offset,
            pending=pending,
            total=len(events),
        )

    @app.post("/api/v1/scheduler/tick", response_model=TickResult)
    async def run_tick(caller: str = Depends(require_auth)) -> TickResult:
        logger.info(f"收到手动 tick 请求: by={caller}")
        return TickResult(delivered=await scheduler.tick())

    return app
