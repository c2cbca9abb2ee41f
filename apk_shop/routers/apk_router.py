"""APK 上传、查询、回滚、下载和删除路由"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from apk_shop import state
from apk_shop.errors import ValidationError
from apk_shop.models.schemas import BulkUploadResponse, RollbackResponse, UploadResponse
from apk_shop.routers.deps import error_response, get_caller
from apk_shop.services.access_gate import Caller
from apk_shop.services.version_service import UploadItem

router = APIRouter(prefix="/api/apks", tags=["apks"])

APK_MEDIA_TYPE = "application/vnd.android.package-archive"


def _too_large():
    max_mb = state.settings.max_upload_bytes // (1024 * 1024)
    return error_response(413, "FILE_TOO_LARGE", f"文件大小超过限制，最大允许 {max_mb} MB")


@router.post("/upload", response_model=UploadResponse)
async def upload_apk(
    apk: Optional[UploadFile] = File(default=None),
    name: str = Form(default=""),
    version: str = Form(default=""),
    description: str = Form(default=""),
    caller: Caller = Depends(get_caller),
):
    """上传一个 APK 版本，链接到同名的上一个版本。"""
    if apk is None:
        raise ValidationError("未上传文件")

    content = await apk.read()
    if len(content) > state.settings.max_upload_bytes:
        return _too_large()

    return await run_in_threadpool(
        state.versions.upload,
        caller.user_id,
        name,
        version,
        description,
        content,
        apk.filename or "",
    )


@router.post("/bulk-upload", response_model=BulkUploadResponse)
async def bulk_upload_apks(
    apks: Optional[list[UploadFile]] = File(default=None),
    names: Optional[list[str]] = Form(default=None),
    versions: Optional[list[str]] = Form(default=None),
    descriptions: Optional[list[str]] = Form(default=None),
    caller: Caller = Depends(get_caller),
):
    """批量上传；第 i 个文件使用 names[i] / versions[i] / descriptions[i]（如有）。"""
    if not apks:
        raise ValidationError("未上传任何文件")

    def _nth(values: Optional[list[str]], index: int) -> Optional[str]:
        if values and index < len(values) and values[index].strip():
            return values[index]
        return None

    items: list[UploadItem] = []
    for index, upload in enumerate(apks):
        content = await upload.read()
        if len(content) > state.settings.max_upload_bytes:
            return _too_large()
        items.append(
            UploadItem(
                content=content,
                filename=upload.filename or "",
                name=_nth(names, index),
                version=_nth(versions, index),
                description=_nth(descriptions, index),
            )
        )

    return await run_in_threadpool(state.versions.upload_many, caller.user_id, items)


@router.get("")
async def list_apks(
    name: Optional[str] = None,
    version: Optional[str] = None,
    owner_id: Optional[int] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(get_caller),
):
    """获取当前 active 的 APK 列表，支持名称 / 版本子串过滤。"""
    apks = await run_in_threadpool(
        state.versions.list_packages,
        owner_id=owner_id,
        name=name,
        version=version,
        limit=limit,
        offset=offset,
    )
    return {"apks": apks}


@router.get("/{apk_id}/versions")
async def list_apk_versions(apk_id: int, caller: Caller = Depends(get_caller)):
    """获取 APK 的全部版本（仅所有者或管理员）。"""
    versions = await run_in_threadpool(state.versions.get_versions, apk_id, caller)
    return {"versions": versions}


@router.post("/{apk_id}/rollback", response_model=RollbackResponse)
async def rollback_apk(apk_id: int, caller: Caller = Depends(get_caller)):
    """回滚到上一个版本。"""
    activated_id = await run_in_threadpool(state.versions.rollback, apk_id, caller)
    return RollbackResponse(activated_id=activated_id)


@router.get("/{apk_id}/download")
async def download_apk(apk_id: int, request: Request, caller: Caller = Depends(get_caller)):
    """下载 APK 文件；响应发送完成后记录下载统计。"""
    target = await run_in_threadpool(state.versions.open_download, apk_id)

    record = BackgroundTask(
        state.analytics.record_download,
        target.package_id,
        caller,
        target.file_size,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return FileResponse(
        path=str(target.path),
        media_type=APK_MEDIA_TYPE,
        filename=target.original_name,
        background=record,
    )


@router.delete("/{apk_id}")
async def delete_apk(apk_id: int, caller: Caller = Depends(get_caller)):
    """删除 APK 记录及其文件（仅所有者或管理员）。"""
    await run_in_threadpool(state.versions.delete, apk_id, caller)
    return {"success": True}
