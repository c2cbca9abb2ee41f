"""Shared route helpers: caller resolution and error responses."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from apk_shop import state
from apk_shop.services.access_gate import Caller


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    """Build a standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            }
        },
    )


async def get_caller(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
) -> Caller:
    """Resolve the bearer token or X-API-Key header into a Caller."""
    caller = await run_in_threadpool(state.gate.resolve, authorization, x_api_key)
    request.state.caller = caller
    return caller


async def get_admin(caller: Caller = Depends(get_caller)) -> Caller:
    state.gate.require_admin(caller)
    return caller
