"""下载统计、访问日志和外部 API（API key）路由"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from apk_shop import state
from apk_shop.models.schemas import ExternalPackageInfo
from apk_shop.routers.deps import get_admin
from apk_shop.services.access_gate import Caller

router = APIRouter(prefix="/api", tags=["analytics"])

EXTERNAL_PREFIX = "/api/external"


async def get_api_key_caller(request: Request, x_api_key: Optional[str] = Header(default=None)) -> Caller:
    caller = await run_in_threadpool(state.gate.authenticate_api_key, x_api_key or "")
    request.state.caller = caller
    return caller


async def access_log_middleware(request: Request, call_next):
    """Record every external API call in the access log (best effort)."""
    if not request.url.path.startswith(EXTERNAL_PREFIX):
        return await call_next(request)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = int((time.perf_counter() - start) * 1000)

    await run_in_threadpool(
        state.analytics.record_access,
        endpoint=str(request.url.path),
        method=request.method,
        caller=getattr(request.state, "caller", None),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        response_status=response.status_code,
        response_time_ms=elapsed_ms,
    )
    return response


@router.get("/analytics/downloads")
async def list_downloads(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    apk_id: Optional[int] = None,
    admin: Caller = Depends(get_admin),
):
    """下载记录（仅管理员）。"""
    downloads = await run_in_threadpool(state.analytics.list_downloads, start_date, end_date, apk_id)
    return {"downloads": downloads}


@router.get("/analytics/access-logs")
async def list_access_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    admin: Caller = Depends(get_admin),
):
    """外部 API 访问日志（仅管理员）。"""
    logs = await run_in_threadpool(state.analytics.list_access_logs, limit)
    return {"logs": logs}


@router.get("/external/apks")
async def external_list_apks(
    name: Optional[str] = None,
    version: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    caller: Caller = Depends(get_api_key_caller),
):
    """外部系统通过 API key 查询当前 active 的 APK。"""
    apks = await run_in_threadpool(state.versions.list_packages, name=name, version=version, limit=limit)
    return {
        "apks": [
            ExternalPackageInfo(
                id=apk.id,
                name=apk.name,
                version=apk.version,
                description=apk.description,
                file_size=apk.file_size,
                upload_date=apk.upload_date,
            )
            for apk in apks
        ]
    }
