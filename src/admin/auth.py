from __future__ import annotations

import hmac
from typing import Awaitable, Callable

from fastapi import HTTPException, Request


def extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    token_header = request.headers.get("X-Admin-Token", "").strip()
    return token_header or None


def admin_guard(admin_token: str) -> Callable[[Request], Awaitable[str]]:
    """生成管理 API 的依赖项；未配置 ADMIN_AUTH_TOKEN 时一律返回 503"""

    async def guard(request: Request) -> str:
        if not admin_token:
            raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

        token = extract_token(request)
        if token and hmac.compare_digest(token, admin_token):
            return "admin-token"
        raise HTTPException(status_code=401, detail="未授权")

    return guard
